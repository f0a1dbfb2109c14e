"""
Thorns Graph Diff

Compares two event graphs from the same compiler stage (typically a
reference build and a candidate build) and reports node pairs whose
results diverge.

Traversal: roots are paired by position, then both hierarchy trees are
walked in lockstep, pairing children by position. At each pair:

1. Outcome check: kind and text must match exactly
2. Leaf text check (only if outcomes matched and either node is a leaf):
   the literal source text of both spans must match

A divergence never stops the walk; children are always compared.

Known limitations (positional pairing): extra roots or extra children on
the longer side are never visited, so a subtree that gains or loses a
node can hide differences beneath it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from thorns.errors import SourceError
from thorns.graph import EventGraph, NodeId
from thorns.sourcemap import SourceResolver
from thorns.trace import Event

logger = logging.getLogger(__name__)


class DivergenceKind(Enum):
    OUTCOME = "outcome"              # Ok/Error/NoOp or their text differ
    TEXT = "text"                    # Leaf source text differs
    LEFT_UNRESOLVED = "left_unresolved"  # Left text missing, right text present


class Side(Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class Divergence:
    left: NodeId
    right: NodeId
    kind: DivergenceKind

    @property
    def pair(self) -> tuple[NodeId, NodeId]:
        return (self.left, self.right)


@dataclass(frozen=True)
class ResolverFailure:
    """A source lookup that failed during the text check.

    Kept even when the failure did not produce a divergence, so that
    tolerated failures remain visible.
    """
    side: Side
    node: NodeId
    error: SourceError

    def __repr__(self) -> str:
        return f"<ResolverFailure {self.side.value} {self.node!r}: {self.error}>"


@dataclass
class DiffReport:
    """Result of a diff: divergences in pre-order discovery order."""
    divergences: list[Divergence] = field(default_factory=list)
    resolver_failures: list[ResolverFailure] = field(default_factory=list)
    pairs_compared: int = 0
    unpaired_roots: int = 0

    @property
    def pairs(self) -> list[tuple[NodeId, NodeId]]:
        return [d.pair for d in self.divergences]

    @property
    def identical(self) -> bool:
        return not self.divergences

    def __iter__(self) -> Iterator[tuple[NodeId, NodeId]]:
        return iter(self.pairs)

    def __len__(self) -> int:
        return len(self.divergences)

    def __repr__(self) -> str:
        return (
            f"<DiffReport: {len(self.divergences)} divergences over "
            f"{self.pairs_compared} pairs, {len(self.resolver_failures)} resolver failures>"
        )


def _resolve(resolver: SourceResolver, event: Event) -> tuple[Optional[str], Optional[SourceError]]:
    try:
        return resolver.text_in_span(event.source), None
    except SourceError as e:
        return None, e


def diff_report(
    left: EventGraph,
    left_resolver: SourceResolver,
    right: EventGraph,
    right_resolver: SourceResolver,
) -> DiffReport:
    """Compare two graphs and collect divergences plus diagnostics."""
    report = DiffReport()
    left_roots = left.roots()
    right_roots = right.roots()
    report.unpaired_roots = abs(len(left_roots) - len(right_roots))
    if report.unpaired_roots:
        logger.info(
            "Root count differs (%d vs %d); only the first %d are compared",
            len(left_roots), len(right_roots), min(len(left_roots), len(right_roots)),
        )

    # Explicit stack; pushing pairs in reverse keeps pre-order
    stack = list(reversed(list(zip(left_roots, right_roots))))
    while stack:
        l, r = stack.pop()
        report.pairs_compared += 1
        ln = left.node(l)
        rn = right.node(r)

        if ln.outcome != rn.outcome:
            report.divergences.append(Divergence(l, r, DivergenceKind.OUTCOME))
        elif left.is_leaf(l) or right.is_leaf(r):
            lt, lerr = _resolve(left_resolver, ln)
            rt, rerr = _resolve(right_resolver, rn)
            if lerr is not None:
                report.resolver_failures.append(ResolverFailure(Side.LEFT, l, lerr))
                logger.debug("Left source unavailable for %r: %s", l, lerr)
            if rerr is not None:
                report.resolver_failures.append(ResolverFailure(Side.RIGHT, r, rerr))
                logger.debug("Right source unavailable for %r: %s", r, rerr)

            if lerr is None and rerr is None:
                if lt != rt:
                    report.divergences.append(Divergence(l, r, DivergenceKind.TEXT))
            elif lerr is not None and rerr is None:
                report.divergences.append(Divergence(l, r, DivergenceKind.LEFT_UNRESOLVED))
            # Right-only and double failures produce no entry

        pairs = list(zip(left.children(l), right.children(r)))
        stack.extend(reversed(pairs))

    logger.info(
        "Diff complete: %d divergences across %d compared pairs",
        len(report.divergences), report.pairs_compared,
    )
    return report


def diff(
    left: EventGraph,
    left_resolver: SourceResolver,
    right: EventGraph,
    right_resolver: SourceResolver,
) -> list[tuple[NodeId, NodeId]]:
    """Divergent (left, right) node pairs in pre-order discovery order."""
    return diff_report(left, left_resolver, right, right_resolver).pairs


# ============================================================================
# Report formatting
# ============================================================================

def _describe(event: Event, resolver: SourceResolver) -> str:
    try:
        text = resolver.text_in_span(event.source)
    except SourceError:
        text = "<source unavailable>"
    return f"{text} | {event.outcome}"


def format_diffs(
    left: EventGraph,
    left_resolver: SourceResolver,
    right: EventGraph,
    right_resolver: SourceResolver,
    pairs: list[tuple[NodeId, NodeId]],
) -> str:
    """Render divergent pairs as a text report, one block per pair."""
    lines = []
    for l, r in pairs:
        ln = left.node(l)
        rn = right.node(r)
        lines.append(
            f"Diff: (({ln.source.low}, {ln.source.high}), ({rn.source.low}, {rn.source.high}))"
        )
        lines.append(f"< {_describe(ln, left_resolver)}")
        lines.append(f"> {_describe(rn, right_resolver)}")
        lines.append("---")
    return "\n".join(lines)
