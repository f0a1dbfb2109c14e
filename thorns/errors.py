"""
Thorns Error Taxonomy

Every failure the library raises derives from ThornsError so callers can
catch one type at the service boundary. Several errors also inherit from
the builtin they refine (ValueError, IndexError) so that generic handlers
keep working.

Construction-time anomalies (unmatched parent ids, dangling reference
spans) are NOT raised by default. They are collected as UnresolvedLink
diagnostics on the graph; MalformedReference is only raised in strict mode.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from thorns.graph import UnresolvedLink


class ThornsError(Exception):
    """Base class for all thorns errors."""


class InvalidSpan(ThornsError, ValueError):
    """A span with low > high, a negative offset, or an offset beyond u32."""

    def __init__(self, value: Any, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid span {value!r}: {reason}")


class MalformedEvent(ThornsError, ValueError):
    """A trace record that does not have the shape of an Event."""

    def __init__(self, record: Any, reason: str) -> None:
        self.record = record
        self.reason = reason
        super().__init__(f"Malformed event: {reason}")


class MalformedSourceMap(ThornsError, ValueError):
    """A sourcemap.json that is not a list of {"source", "span"} entries."""

    def __init__(self, entry: Any, reason: str) -> None:
        self.entry = entry
        self.reason = reason
        super().__init__(f"Malformed source map: {reason}")


class MalformedReference(ThornsError):
    """One or more parent ids / reference spans matched no event."""

    def __init__(self, links: list[UnresolvedLink]) -> None:
        self.links = list(links)
        preview = ", ".join(repr(link) for link in self.links[:5])
        more = f" (+{len(self.links) - 5} more)" if len(self.links) > 5 else ""
        super().__init__(f"{len(self.links)} unresolved link(s): {preview}{more}")


class MalformedHierarchy(ThornsError):
    """Hierarchy edges form a cycle, so no leaves-to-root order exists."""


class GraphStateError(ThornsError):
    """An operation that conflicts with the graph's lifecycle (e.g. merging twice)."""


class NodeNotFound(ThornsError, IndexError):
    """A NodeId outside the graph's node arena."""

    def __init__(self, node: Any, size: int) -> None:
        self.node = node
        self.size = size
        super().__init__(f"Node {node!r} out of range for graph with {size} nodes")


# ----------------------------------------------------------------------------
# Source resolution
# ----------------------------------------------------------------------------

class SourceError(ThornsError):
    """Base class for failures while mapping a span to source text."""


class SourceUnavailable(SourceError):
    """No file in the source map covers the requested span (or file)."""

    def __init__(self, what: Any) -> None:
        self.what = what
        super().__init__(f"No source available for {what!r}")


class SourceReadFailure(SourceError):
    """I/O, short-read or decoding failure while extracting span text."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to read {path}: {reason}")
