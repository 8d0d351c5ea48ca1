"""Pseudo-likelihood parameter estimation for pairwise CRFs."""

from .graph import Edge, Graph, Node
from .types import EdgeType, Independent, NodeType, Symmetric, TransposeOf, TypeRegistry
from .weight_index import WeightIndex, WeightSnapshot, build_weight_index

__all__ = [
    "Edge",
    "Graph",
    "Node",
    "EdgeType",
    "Independent",
    "NodeType",
    "Symmetric",
    "TransposeOf",
    "TypeRegistry",
    "WeightIndex",
    "WeightSnapshot",
    "build_weight_index",
]
