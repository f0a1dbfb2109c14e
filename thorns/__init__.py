"""
Thorns - compiler trace insight
Reconstructs per-stage causal graphs from compiler instrumentation events
and diffs them between two builds.

Trace: Span, Event, Outcome, the per-run event store
Graph: hierarchy / reference inference, no-op merge, tree queries
Diff:  paired traversal of two graphs with leaf text comparison
"""

__version__ = "0.2.0"

from thorns.trace import Span, Event, Outcome, OutcomeKind, Trace
from thorns.graph import (
    EventGraph,
    Edge,
    EdgeType,
    NodeId,
    UnresolvedLink,
    build_graph,
    merge_noops,
    roots,
    node,
    children,
    is_leaf,
)
from thorns.sourcemap import SourceMap, SourceResolver
from thorns.diff import DiffReport, Divergence, DivergenceKind, diff, diff_report, format_diffs
from thorns.core import Run, open_run, graph_for_stage
from thorns.config import Settings, setup_logging
from thorns.errors import (
    ThornsError,
    InvalidSpan,
    MalformedEvent,
    MalformedSourceMap,
    MalformedReference,
    MalformedHierarchy,
    GraphStateError,
    NodeNotFound,
    SourceError,
    SourceUnavailable,
    SourceReadFailure,
)

__all__ = [
    "Span",
    "Event",
    "Outcome",
    "OutcomeKind",
    "Trace",
    "EventGraph",
    "Edge",
    "EdgeType",
    "NodeId",
    "UnresolvedLink",
    "build_graph",
    "merge_noops",
    "roots",
    "node",
    "children",
    "is_leaf",
    "SourceMap",
    "SourceResolver",
    "DiffReport",
    "Divergence",
    "DivergenceKind",
    "diff",
    "diff_report",
    "format_diffs",
    "Run",
    "open_run",
    "graph_for_stage",
    "Settings",
    "setup_logging",
    "ThornsError",
    "InvalidSpan",
    "MalformedEvent",
    "MalformedSourceMap",
    "MalformedReference",
    "MalformedHierarchy",
    "GraphStateError",
    "NodeNotFound",
    "SourceError",
    "SourceUnavailable",
    "SourceReadFailure",
]
