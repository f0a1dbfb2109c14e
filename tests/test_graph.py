"""
Thorns Graph Test Suite

1. Hierarchy inference (containment + explicit parents)
2. Reference inference (multiplicity, unresolved spans)
3. Root / child / leaf queries
4. No-op merge (chains, parentless no-ops, lifecycle)
5. Export (dict, networkx)
"""

import os
import sys

import networkx as nx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from thorns import (
    EdgeType,
    Event,
    NodeId,
    Outcome,
    Span,
    build_graph,
    children,
    is_leaf,
    merge_noops,
    node,
    roots,
)
from thorns.errors import (
    GraphStateError,
    MalformedHierarchy,
    MalformedReference,
    NodeNotFound,
)
from thorns.graph import LinkKind


def ev(id, low, high, ok=None, error=None, parent_id=None, ref=None, stage="parser"):
    if ok is not None:
        outcome = Outcome.ok(ok)
    elif error is not None:
        outcome = Outcome.error(error)
    else:
        outcome = Outcome.noop()
    return Event(
        id=id,
        source=Span(low, high),
        stage=stage,
        outcome=outcome,
        parent_id=parent_id,
        ref=Span(*ref) if ref else None,
    )


def hierarchy_pairs(graph):
    return [(e.source, e.target) for e in graph.edges if e.type == EdgeType.HIERARCHY]


def incident(graph, index):
    return [e for e in graph.edges if e.source == index or e.target == index]


# --- 1. Hierarchy inference ---

def test_single_event_is_the_only_root():
    g = build_graph([ev(1, 0, 10, ok="x")])
    assert g.roots() == [NodeId(0)]
    assert hierarchy_pairs(g) == []


def test_later_enclosing_event_becomes_parent():
    # Post-order emission: B (0,50) is emitted before the enclosing A (0,100)
    b = ev(2, 0, 50, ok="b")
    a = ev(1, 0, 100, ok="a")
    g = build_graph([b, a])
    assert hierarchy_pairs(g) == [(1, 0)]
    assert g.roots() == [NodeId(1)]
    assert g.node(NodeId(1)) is a


def test_enclosing_event_emitted_first_is_not_linked():
    # Violates the emission contract, so containment is not discovered
    g = build_graph([ev(1, 0, 100, ok="a"), ev(2, 0, 50, ok="b")])
    assert hierarchy_pairs(g) == []
    assert g.roots() == [NodeId(0), NodeId(1)]


def test_first_containing_event_wins_over_ancestors():
    leaf = ev(1, 2, 3, ok="leaf")
    mid = ev(2, 0, 5, ok="mid")
    top = ev(3, 0, 10, ok="top")
    g = build_graph([leaf, mid, top])
    assert hierarchy_pairs(g) == [(1, 0), (2, 1)]


def test_explicit_parent_id_takes_precedence_over_containment():
    events = [
        ev(1, 0, 5, ok="child", parent_id=30),
        ev(20, 0, 10, ok="container"),
        ev(30, 50, 60, ok="declared parent"),
    ]
    g = build_graph(events)
    assert hierarchy_pairs(g) == [(2, 0)]


def test_explicit_parent_can_precede_child():
    g = build_graph([ev(7, 0, 100, ok="fn"), ev(8, 10, 20, ok="body", parent_id=7)])
    assert hierarchy_pairs(g) == [(0, 1)]


def test_duplicate_ids_resolve_to_first_match():
    events = [
        ev(5, 0, 1, ok="first"),
        ev(5, 2, 3, ok="second"),
        ev(9, 40, 50, ok="child", parent_id=5),
    ]
    g = build_graph(events)
    assert hierarchy_pairs(g) == [(0, 2)]


def test_unmatched_parent_is_reported_not_fatal():
    g = build_graph([ev(1, 0, 5, ok="x", parent_id=99), ev(2, 10, 20, ok="y")])
    assert g.roots() == [NodeId(0), NodeId(1)]
    assert len(g.unresolved) == 1
    link = g.unresolved[0]
    assert link.node == NodeId(0)
    assert link.kind == LinkKind.PARENT
    assert link.wanted == 99


def test_self_parent_is_reported_and_not_linked():
    g = build_graph([ev(1, 0, 5, ok="x", parent_id=1)])
    assert hierarchy_pairs(g) == []
    assert [l.kind for l in g.unresolved] == [LinkKind.PARENT]


def test_strict_mode_raises_with_links():
    with pytest.raises(MalformedReference) as info:
        build_graph([ev(1, 0, 5, ok="x", parent_id=99)], strict=True)
    assert len(info.value.links) == 1


# --- 2. Reference inference ---

def test_reference_edges_keep_every_matching_span():
    events = [
        ev(1, 0, 5, ok="decl a"),
        ev(2, 0, 5, ok="decl b"),
        ev(3, 10, 20, ok="use", ref=(0, 5)),
    ]
    g = build_graph(events)
    refs = [(e.source, e.target) for e in g.edges if e.type == EdgeType.REFERENCE]
    assert refs == [(2, 0), (2, 1)]
    assert g.references(NodeId(2)) == [NodeId(0), NodeId(1)]
    assert g.referenced_by(NodeId(0)) == [NodeId(2)]
    assert g.referenced_by(NodeId(2)) == []


def test_reference_needs_exact_span_match():
    g = build_graph([ev(1, 0, 6, ok="decl"), ev(2, 10, 20, ok="use", ref=(0, 5))])
    assert g.references(NodeId(1)) == []
    assert [l.kind for l in g.unresolved] == [LinkKind.REFERENCE]
    assert g.unresolved[0].wanted == Span(0, 5)


# --- 3. Queries ---

def test_children_in_edge_insertion_order():
    events = [ev(1, 0, 2, ok="a"), ev(2, 3, 5, ok="b"), ev(3, 6, 8, ok="c"), ev(4, 0, 10, ok="p")]
    g = build_graph(events)
    assert g.children(NodeId(3)) == [NodeId(0), NodeId(1), NodeId(2)]
    assert children(g, NodeId(3)) == g.children(NodeId(3))


def test_is_leaf_counts_any_outgoing_edge():
    events = [ev(1, 0, 5, ok="decl"), ev(2, 10, 20, ok="use", ref=(0, 5))]
    g = build_graph(events)
    assert g.is_leaf(NodeId(0))
    assert not g.is_leaf(NodeId(1))
    assert is_leaf(g, NodeId(0))


def test_parent_lookup():
    g = build_graph([ev(1, 0, 5, ok="c"), ev(2, 0, 10, ok="p")])
    assert g.parent(NodeId(0)) == NodeId(1)
    assert g.parent(NodeId(1)) is None


def test_out_of_range_node_raises_typed_error():
    g = build_graph([ev(1, 0, 5, ok="x")])
    with pytest.raises(NodeNotFound):
        g.node(NodeId(1))
    with pytest.raises(IndexError):
        node(g, NodeId(-1))
    with pytest.raises(NodeNotFound):
        g.children(NodeId(4))


def test_roots_exclude_noops_before_and_after_merge():
    g = build_graph([ev(1, 0, 5, ok="x"), ev(2, 100, 200)])
    assert roots(g) == [NodeId(0)]
    merge_noops(g)
    assert roots(g) == [NodeId(0)]


# --- 4. No-op merge ---

def test_noop_between_parent_and_child_is_spliced_out():
    b = ev(1, 2, 3, ok="b")
    n = ev(2, 0, 5)
    a = ev(3, 0, 10, ok="a")
    g = build_graph([b, n, a])
    assert hierarchy_pairs(g) == [(1, 0), (2, 1)]

    assert merge_noops(g) is g
    assert hierarchy_pairs(g) == [(2, 0)]
    assert incident(g, 1) == []
    assert g.children(NodeId(2)) == [NodeId(0)]
    assert nx.descendants(g.hierarchy(), 2) == {0}
    # The arena is not compacted
    assert g.num_nodes == 3
    assert g.node(NodeId(1)) is n


def test_chained_noops_collapse_onto_real_ancestor():
    events = [
        ev(1, 0, 5, ok="B"),
        ev(2, 0, 10),
        ev(3, 0, 20),
        ev(4, 0, 30, ok="A"),
    ]
    g = build_graph(events)
    assert g.roots() == [NodeId(3)]
    merge_noops(g)
    assert hierarchy_pairs(g) == [(3, 0)]
    assert incident(g, 1) == []
    assert incident(g, 2) == []
    assert g.roots() == [NodeId(3)]


def test_noop_with_several_children_hands_them_to_parent_in_order():
    events = [
        ev(1, 0, 1, ok="c1"),
        ev(2, 2, 3, ok="c2"),
        ev(3, 0, 5),
        ev(4, 6, 8, ok="sibling"),
        ev(5, 0, 10, ok="root"),
    ]
    g = build_graph(events)
    merge_noops(g)
    assert g.children(NodeId(4)) == [NodeId(0), NodeId(1), NodeId(3)]


def test_reference_edges_from_noop_move_to_parent():
    events = [
        ev(1, 50, 60, ok="decl"),
        ev(2, 0, 5, ref=(50, 60)),
        ev(3, 0, 10, ok="expr"),
    ]
    g = build_graph(events)
    merge_noops(g)
    assert g.references(NodeId(2)) == [NodeId(0)]
    assert g.references(NodeId(1)) == []


def test_parentless_noop_releases_its_children_as_roots():
    g = build_graph([ev(1, 0, 5, ok="x"), ev(2, 0, 10)])
    assert g.roots() == []
    merge_noops(g)
    assert g.roots() == [NodeId(0)]
    assert g.edges == []


def test_merge_twice_is_rejected():
    g = merge_noops(build_graph([ev(1, 0, 5, ok="x")]))
    assert g.merged
    with pytest.raises(GraphStateError):
        merge_noops(g)


def test_cyclic_explicit_parents_fail_merge():
    g = build_graph([ev(1, 0, 5, ok="a", parent_id=2), ev(2, 0, 5, ok="b", parent_id=1)])
    with pytest.raises(MalformedHierarchy):
        merge_noops(g)


def test_merged_hierarchy_is_a_forest():
    events = [
        ev(1, 0, 1, ok="t"),
        ev(2, 0, 2),
        ev(3, 3, 4, ok="u"),
        ev(4, 0, 5),
        ev(5, 0, 9, ok="s"),
        ev(6, 20, 21),
        ev(7, 20, 30, ok="r"),
    ]
    g = merge_noops(build_graph(events))
    h = g.hierarchy()
    assert nx.is_forest(h.to_undirected())
    assert all(h.in_degree(n) <= 1 for n in h.nodes)


# --- 5. Export ---

def test_to_dict_uses_serialized_edge_tags():
    g = build_graph([ev(1, 0, 5, ok="decl"), ev(2, 0, 10, ok="use", ref=(0, 5))])
    data = g.to_dict()
    assert [n["id"] for n in data["nodes"]] == [1, 2]
    assert data["edges"] == [
        {"source": 1, "target": 0, "ty": "Parent"},
        {"source": 1, "target": 0, "ty": "Ref"},
    ]


def test_to_networkx_keeps_parallel_edges():
    g = build_graph([ev(1, 0, 5, ok="decl"), ev(2, 0, 10, ok="use", ref=(0, 5))])
    mg = g.to_networkx()
    assert mg.number_of_nodes() == 2
    assert mg.number_of_edges(1, 0) == 2
    assert mg.nodes[0]["span"] == (0, 5)


def test_summary_mentions_unresolved_links():
    g = build_graph([ev(1, 0, 5, ok="x", parent_id=42)])
    text = g.summary()
    assert "1 nodes" in text
    assert "Unresolved links: 1" in text
