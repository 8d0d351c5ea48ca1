"""Graph containers consumed by training.

Nodes and edges refer to their types by id; the registry owns the weights.
Edge potentials are indexed [class(node1), class(node2)].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import numpy as np

__all__ = ["Node", "Edge", "Graph", "GroundTruth"]

GroundTruth = Mapping[int, int]


@dataclass(eq=False)
class Node:
    node_id: int
    type_id: str
    features: np.ndarray
    potentials: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.features = np.asarray(self.features, dtype=float).reshape(-1)


@dataclass(eq=False)
class Edge:
    node1: int
    node2: int
    type_id: str
    features: np.ndarray
    potentials: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.features = np.asarray(self.features, dtype=float).reshape(-1)

    def other(self, node_id: int) -> int:
        """Return the endpoint opposite to ``node_id``."""
        if node_id == self.node1:
            return self.node2
        assert node_id == self.node2, "node is not an endpoint of this edge"
        return self.node1


@dataclass(eq=False)
class Graph:
    """Nodes, edges and an endpoint index listing every edge under both ends."""

    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    _by_id: Dict[int, Node] = field(default_factory=dict, init=False, repr=False)
    _incident: Dict[int, List[Edge]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        nodes, edges = list(self.nodes), list(self.edges)
        self.nodes, self.edges = [], []
        for node in nodes:
            self.add_node(node)
        for edge in edges:
            self.add_edge(edge)

    def add_node(self, node: Node) -> Node:
        if node.node_id in self._by_id:
            raise ValueError(f"Duplicate node id: {node.node_id}")
        self.nodes.append(node)
        self._by_id[node.node_id] = node
        self._incident[node.node_id] = []
        return node

    def add_edge(self, edge: Edge) -> Edge:
        for end in (edge.node1, edge.node2):
            if end not in self._by_id:
                raise ValueError(f"Edge endpoint {end} is not a node of this graph")
        if edge.node1 == edge.node2:
            raise ValueError(f"Self-loop on node {edge.node1} is not a pairwise edge")
        self.edges.append(edge)
        self._incident[edge.node1].append(edge)
        self._incident[edge.node2].append(edge)
        return edge

    def node(self, node_id: int) -> Node:
        return self._by_id[node_id]

    def incident_edges(self, node_id: int) -> List[Edge]:
        return self._incident.get(node_id, [])

    def __len__(self) -> int:
        return len(self.nodes)
