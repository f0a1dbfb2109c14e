"""
Thorns Event Graph

The graph is reconstructed from the trace of a single compiler stage.
Nodes are Events (stored in an arena and addressed by a stable NodeId),
edges are derived relations between them:

- HIERARCHY: the source event syntactically encloses the target event
- REFERENCE: the source event's value was computed using the target's value

Construction:
1. Hierarchy inference: explicit parent id first, otherwise the first
   LATER event whose span contains this one (post-order emission contract)
2. Reference inference: every event whose span equals the ref span
3. No-op merge (optional, once): splice no-op nodes out of the hierarchy,
   deepest first, so chained no-ops collapse onto their nearest real ancestor

Anomalies found while linking (parent ids or ref spans with no match) do
not fail construction. They are collected as UnresolvedLink diagnostics
and exposed on the graph.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

import networkx as nx

from thorns.errors import (
    GraphStateError,
    MalformedHierarchy,
    MalformedReference,
    NodeNotFound,
)
from thorns.trace import Event, Span

logger = logging.getLogger(__name__)


# ============================================================================
# Edge Model
# ============================================================================

class EdgeType(Enum):
    """Relation kinds. Values are the tags used in the serialized graph."""
    HIERARCHY = "Parent"   # Structural containment
    REFERENCE = "Ref"      # Contextual dependency


@dataclass(frozen=True, order=True)
class NodeId:
    """Opaque handle to a node: its position in the node arena.

    Never reused or invalidated. Merging rewrites edges, it does not
    compact the arena.
    """
    index: int

    def __repr__(self) -> str:
        return f"NodeId({self.index})"


@dataclass(frozen=True)
class Edge:
    """Directed relation between two arena positions."""
    source: int
    target: int
    type: EdgeType

    def with_source(self, source: int) -> Edge:
        return Edge(source, self.target, self.type)

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target, "ty": self.type.value}

    def __repr__(self) -> str:
        arrow = "=>" if self.type == EdgeType.HIERARCHY else "~>"
        return f"<Edge {self.source}{arrow}{self.target}>"


class LinkKind(Enum):
    PARENT = "parent"
    REFERENCE = "reference"


@dataclass(frozen=True)
class UnresolvedLink:
    """A parent id or ref span that matched no event in the sequence."""
    node: NodeId
    kind: LinkKind
    wanted: Any          # The parent id or the ref Span that was looked up
    detail: str = ""

    def __repr__(self) -> str:
        detail = f" ({self.detail})" if self.detail else ""
        return f"<Unresolved {self.kind.value} {self.wanted!r} from {self.node!r}{detail}>"


# ============================================================================
# The Event Graph
# ============================================================================

class EventGraph:
    """Node arena plus derived, ordered edge list.

    Edge order is significant: children() reports targets in the order
    their edges were inserted, and merge keeps surviving edges in place.
    """

    def __init__(
        self,
        nodes: Iterable[Event],
        edges: Iterable[Edge] = (),
        unresolved: Iterable[UnresolvedLink] = (),
    ) -> None:
        self._nodes: tuple[Event, ...] = tuple(nodes)
        self._edges: list[Edge] = list(edges)
        self._unresolved: list[UnresolvedLink] = list(unresolved)
        self._merged = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _add_edge(self, source: int, target: int, edge_type: EdgeType) -> None:
        self._edges.append(Edge(source, target, edge_type))

    def _check(self, node: NodeId) -> int:
        index = node.index
        if not 0 <= index < len(self._nodes):
            raise NodeNotFound(node, len(self._nodes))
        return index

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def node(self, node: NodeId) -> Event:
        """The event stored at this position."""
        return self._nodes[self._check(node)]

    def roots(self) -> list[NodeId]:
        """Non-no-op nodes with no incoming hierarchy edge, ascending."""
        has_parent = {e.target for e in self._edges if e.type == EdgeType.HIERARCHY}
        return [
            NodeId(i)
            for i, event in enumerate(self._nodes)
            if i not in has_parent and not event.is_noop
        ]

    def children(self, node: NodeId) -> list[NodeId]:
        """Hierarchy targets of `node`, in edge-insertion order."""
        index = self._check(node)
        return [
            NodeId(e.target)
            for e in self._edges
            if e.type == EdgeType.HIERARCHY and e.source == index
        ]

    def parent(self, node: NodeId) -> Optional[NodeId]:
        index = self._check(node)
        for e in self._edges:
            if e.type == EdgeType.HIERARCHY and e.target == index:
                return NodeId(e.source)
        return None

    def references(self, node: NodeId) -> list[NodeId]:
        """Nodes whose value `node` used as context."""
        index = self._check(node)
        return [
            NodeId(e.target)
            for e in self._edges
            if e.type == EdgeType.REFERENCE and e.source == index
        ]

    def referenced_by(self, node: NodeId) -> list[NodeId]:
        """Nodes that used `node`'s value as context."""
        index = self._check(node)
        return [
            NodeId(e.source)
            for e in self._edges
            if e.type == EdgeType.REFERENCE and e.target == index
        ]

    def is_leaf(self, node: NodeId) -> bool:
        """True iff no edge of any type starts at `node`."""
        index = self._check(node)
        return not any(e.source == index for e in self._edges)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> tuple[Event, ...]:
        return self._nodes

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    @property
    def num_nodes(self) -> int:
        return len(self._nodes)

    @property
    def num_edges(self) -> int:
        return len(self._edges)

    @property
    def unresolved(self) -> list[UnresolvedLink]:
        """Links that could not be resolved during construction."""
        return list(self._unresolved)

    @property
    def merged(self) -> bool:
        return self._merged

    def hierarchy(self) -> nx.DiGraph:
        """The hierarchy edges alone, as a DiGraph over arena positions."""
        g = nx.DiGraph()
        g.add_nodes_from(range(len(self._nodes)))
        g.add_edges_from(
            (e.source, e.target) for e in self._edges if e.type == EdgeType.HIERARCHY
        )
        return g

    def to_networkx(self) -> nx.MultiDiGraph:
        """Full graph for visualization consumers.

        Node keys are arena positions with the Event under 'event';
        edges carry their EdgeType under 'type'.
        """
        g = nx.MultiDiGraph()
        for i, event in enumerate(self._nodes):
            g.add_node(i, event=event, span=(event.source.low, event.source.high))
        for e in self._edges:
            g.add_edge(e.source, e.target, type=e.type)
        return g

    def to_dict(self) -> dict[str, Any]:
        """The serialized topology: {"nodes": [...records], "edges": [...]}."""
        return {
            "nodes": [event.to_record() for event in self._nodes],
            "edges": [e.to_dict() for e in self._edges],
        }

    def summary(self) -> str:
        """Human-readable graph summary."""
        n_hier = sum(1 for e in self._edges if e.type == EdgeType.HIERARCHY)
        lines = [
            f"Event Graph: {len(self._nodes)} nodes, {len(self._edges)} edges "
            f"({n_hier} hierarchy, {len(self._edges) - n_hier} reference)",
            f"Merged: {'yes' if self._merged else 'no'}",
            f"Roots: {[r.index for r in self.roots()]}",
        ]
        if self._unresolved:
            lines.append(f"Unresolved links: {len(self._unresolved)}")
            for link in self._unresolved:
                lines.append(f"  {link}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"<EventGraph: {len(self._nodes)} nodes, {len(self._edges)} edges>"


# ============================================================================
# Graph Builder
# ============================================================================

def build_graph(events: Sequence[Event], strict: bool = False) -> EventGraph:
    """Infer hierarchy and reference edges for one stage's event sequence.

    Args:
        events: Events of a single stage, in emission order
        strict: Raise MalformedReference if any link is unresolved

    Returns:
        A new, unmerged EventGraph
    """
    graph = EventGraph(events)
    nodes = graph.nodes
    unresolved: list[UnresolvedLink] = []

    # First position wins for duplicate ids; all positions kept per span
    by_id: dict[int, int] = {}
    by_span: dict[Span, list[int]] = {}
    for pos, event in enumerate(nodes):
        by_id.setdefault(event.id, pos)
        by_span.setdefault(event.source, []).append(pos)

    # Hierarchy edges
    for i, event in enumerate(nodes):
        if event.parent_id is not None:
            j = by_id.get(event.parent_id)
            if j is None:
                unresolved.append(UnresolvedLink(
                    NodeId(i), LinkKind.PARENT, event.parent_id, "no event with this id",
                ))
            elif j == i:
                unresolved.append(UnresolvedLink(
                    NodeId(i), LinkKind.PARENT, event.parent_id, "event names itself as parent",
                ))
            else:
                graph._add_edge(j, i, EdgeType.HIERARCHY)
            continue

        # The first later event that contains i is its parent; going further
        # would link an ancestor instead.
        for j in range(i + 1, len(nodes)):
            if nodes[j].source.contains(event.source):
                graph._add_edge(j, i, EdgeType.HIERARCHY)
                break

    # Reference edges
    for i, event in enumerate(nodes):
        if event.ref is None:
            continue
        targets = by_span.get(event.ref, [])
        if not targets:
            unresolved.append(UnresolvedLink(
                NodeId(i), LinkKind.REFERENCE, event.ref, "no event covers this span",
            ))
        for j in targets:
            graph._add_edge(i, j, EdgeType.REFERENCE)

    graph._unresolved = unresolved

    logger.info("Built graph: %d nodes, %d edges", graph.num_nodes, graph.num_edges)
    for link in unresolved:
        logger.warning("Unresolved link: %r", link)

    if strict and unresolved:
        raise MalformedReference(unresolved)
    return graph


# ============================================================================
# No-op Merge
# ============================================================================

def _noops_deepest_first(graph: EventGraph) -> list[int]:
    """No-op positions ordered so every no-op precedes its ancestors."""
    hierarchy = graph.hierarchy()
    try:
        order = list(nx.topological_sort(hierarchy))
    except nx.NetworkXUnfeasible as e:
        cycle = nx.find_cycle(hierarchy)
        raise MalformedHierarchy(f"Hierarchy edges form a cycle: {cycle}") from e
    nodes = graph.nodes
    return [pos for pos in reversed(order) if nodes[pos].is_noop]


def merge_noops(graph: EventGraph) -> EventGraph:
    """Splice every no-op node out of the hierarchy. Mutates and returns `graph`.

    For each no-op N with parent P: edges sourced at N now start at P, and
    the P -> N edge is dropped. A no-op without a parent loses its outgoing
    edges, which leaves its children as roots. N stays in the arena.
    """
    if graph.merged:
        raise GraphStateError("Graph has already been merged")

    edges = graph.edges
    for n in _noops_deepest_first(graph):
        parent_edge: Optional[int] = None
        for idx, e in enumerate(edges):
            if e.type == EdgeType.HIERARCHY and e.target == n:
                parent_edge = idx
                break

        if parent_edge is None:
            logger.debug("Dropping edges of parentless NOOP %d", n)
            edges = [e for e in edges if e.source != n]
            continue

        parent = edges[parent_edge].source
        rebuilt: list[Edge] = []
        for idx, e in enumerate(edges):
            if idx == parent_edge:
                continue
            if e.source == n:
                logger.debug(
                    "Found NOOP (%d -> %d) => (%d -> %d)", e.source, e.target, parent, e.target,
                )
                e = e.with_source(parent)
            rebuilt.append(e)
        edges = rebuilt

    graph._edges = edges
    graph._merged = True
    logger.info("Merged NOOPs: %d edges remain", len(edges))
    return graph


# ============================================================================
# Functional query surface
# ============================================================================

def roots(graph: EventGraph) -> list[NodeId]:
    return graph.roots()


def node(graph: EventGraph, node_id: NodeId) -> Event:
    return graph.node(node_id)


def children(graph: EventGraph, node_id: NodeId) -> list[NodeId]:
    return graph.children(node_id)


def is_leaf(graph: EventGraph, node_id: NodeId) -> bool:
    return graph.is_leaf(node_id)
