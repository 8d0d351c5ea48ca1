from __future__ import annotations

import numpy as np
import pytest

from crf.graph import Edge, Graph, Node
from crf.types import EdgeType, Independent, NodeType, Symmetric, TransposeOf, TypeRegistry, parse_sharing_mode


def test_registry_keeps_insertion_order_and_lookup():
    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("b", 2, 1))
    reg.add_node_type(NodeType.zeros("a", 3, 4))
    reg.add_edge_type(EdgeType.zeros("ab", 2, 3, [Independent()]))
    assert [t.type_id for t in reg.node_types] == ["b", "a"]
    assert reg.node_type("a").n_classes == 3
    assert reg.node_type("a").n_features == 4
    assert reg.edge_type("ab").shape == (2, 3)
    assert reg.edge_type("ab").n_features == 1
    assert len(list(reg)) == 3


def test_registry_rejects_duplicates_and_unknown_ids():
    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("n", 2, 1))
    with pytest.raises(ValueError):
        reg.add_node_type(NodeType.zeros("n", 2, 1))
    with pytest.raises(KeyError):
        reg.edge_type("missing")
    assert not reg.has_edge_type("missing")


def test_edge_type_defaults_to_independent_modes():
    et = EdgeType(type_id="e", weights=np.zeros((2, 3, 3)))
    assert et.modes == (Independent(), Independent())


@pytest.mark.parametrize(
    "token, feature, expected",
    [
        ("independent", 0, Independent()),
        ("Symmetric", 0, Symmetric()),
        ("transpose", 3, TransposeOf(2)),
        ("transpose:0", 3, TransposeOf(0)),
        (0, 0, Symmetric()),
        (1, 0, Independent()),
        ("2", 1, TransposeOf(0)),
    ],
)
def test_parse_sharing_mode(token, feature, expected):
    assert parse_sharing_mode(token, feature) == expected


def test_parse_sharing_mode_rejects_unknown():
    with pytest.raises(ValueError):
        parse_sharing_mode("diagonal", 0)
    with pytest.raises(ValueError):
        parse_sharing_mode(7, 0)


def test_graph_lists_edges_under_both_endpoints():
    g = Graph()
    for i in range(3):
        g.add_node(Node(node_id=i, type_id="n", features=[1.0]))
    e01 = g.add_edge(Edge(node1=0, node2=1, type_id="e", features=[1.0]))
    e12 = g.add_edge(Edge(node1=1, node2=2, type_id="e", features=[1.0]))
    assert g.incident_edges(0) == [e01]
    assert g.incident_edges(1) == [e01, e12]
    assert g.incident_edges(2) == [e12]
    assert e12.other(2) == 1
    assert len(g) == 3


def test_graph_constructor_indexes_given_nodes_and_edges():
    nodes = [Node(node_id=5, type_id="n", features=[0.0]), Node(node_id=7, type_id="n", features=[0.0])]
    g = Graph(nodes=nodes, edges=[Edge(node1=7, node2=5, type_id="e", features=[1.0])])
    assert len(g.incident_edges(5)) == 1
    assert g.node(7) is nodes[1]


def test_graph_rejects_bad_edges_and_duplicate_nodes():
    g = Graph(nodes=[Node(node_id=0, type_id="n", features=[1.0])])
    with pytest.raises(ValueError):
        g.add_node(Node(node_id=0, type_id="n", features=[1.0]))
    with pytest.raises(ValueError):
        g.add_edge(Edge(node1=0, node2=9, type_id="e", features=[1.0]))
    with pytest.raises(ValueError):
        g.add_edge(Edge(node1=0, node2=0, type_id="e", features=[1.0]))
