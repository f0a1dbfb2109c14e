"""
Thorns Trace Model

A trace is the ordered, immutable sequence of instrumentation events that
one run of the compiler emits. Every event covers a Span of the project's
virtual address space: all source files concatenated, each file assigned
a global offset range by the source map.

Key concepts:
- Span: (low, high) offsets, unsigned 32-bit, low <= high
- Outcome: Ok(text) | Error(text) | NoOp, mutually exclusive
- Event: one instrumentation record (id, parent hint, span, stage, outcome, ref)
- Trace: the event store for one run, loaded from trace.json

Emission order contract: an enclosing event is emitted AFTER every event
it encloses (post-order, as the compiler unwinds its stack). Hierarchy
inference in thorns.graph depends on this and cannot verify it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union

from thorns.errors import InvalidSpan, MalformedEvent

logger = logging.getLogger(__name__)

U32_MAX = 0xFFFF_FFFF


# ============================================================================
# Span
# ============================================================================

@dataclass(frozen=True, order=True)
class Span:
    """An offset range into the concatenation of all project files.

    Spans are ordered by (low, high), which is the order files_in_span()
    and the source map use.
    """
    low: int
    high: int

    def __post_init__(self) -> None:
        for bound in (self.low, self.high):
            if isinstance(bound, bool) or not isinstance(bound, int):
                raise InvalidSpan((self.low, self.high), "offsets must be integers")
            if bound < 0 or bound > U32_MAX:
                raise InvalidSpan((self.low, self.high), "offset outside u32 range")
        if self.low > self.high:
            raise InvalidSpan((self.low, self.high), "low exceeds high")

    @classmethod
    def from_json(cls, value: Any) -> Span:
        """Parse the persisted `[low, high]` form."""
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise InvalidSpan(value, "expected a [low, high] pair")
        return cls(value[0], value[1])

    def to_json(self) -> list[int]:
        return [self.low, self.high]

    @property
    def length(self) -> int:
        return self.high - self.low

    def contains(self, other: Span) -> bool:
        """True if `other` lies within this span (bounds inclusive)."""
        return self.low <= other.low and other.high <= self.high

    def intersects(self, other: Span) -> bool:
        """True unless one span lies wholly outside the other."""
        return other.low <= self.high and other.high >= self.low

    def intersection(self, other: Span) -> Optional[Span]:
        low = max(self.low, other.low)
        high = min(self.high, other.high)
        if low > high:
            return None
        return Span(low, high)

    def __repr__(self) -> str:
        return f"<Span [{self.low}:{self.high}]>"


# ============================================================================
# Outcome
# ============================================================================

class OutcomeKind(Enum):
    """What an instrumentation point recorded."""
    OK = "ok"
    ERROR = "error"
    NOOP = "noop"    # Point reached, nothing recorded


@dataclass(frozen=True)
class Outcome:
    """Tri-state result of an event. Two outcomes are equal only when both
    the kind and the text match."""
    kind: OutcomeKind
    text: Optional[str] = None

    @classmethod
    def ok(cls, text: str) -> Outcome:
        return cls(OutcomeKind.OK, text)

    @classmethod
    def error(cls, text: str) -> Outcome:
        return cls(OutcomeKind.ERROR, text)

    @classmethod
    def noop(cls) -> Outcome:
        return cls(OutcomeKind.NOOP)

    @property
    def is_noop(self) -> bool:
        return self.kind == OutcomeKind.NOOP

    def __str__(self) -> str:
        return self.text or ""


# ============================================================================
# Event
# ============================================================================

@dataclass(frozen=True)
class Event:
    """One instrumentation record from a compiler stage.

    Attributes:
        id: Identifier, unique within a run
        parent_id: Explicit hierarchy hint, takes precedence over containment
        source: The span this event covers
        stage: Compiler phase that emitted it ("lexer", "parser", ...)
        outcome: Ok / Error / NoOp
        ref: Span of an event whose value this one used as context
    """
    id: int
    source: Span
    stage: str
    outcome: Outcome = Outcome(OutcomeKind.NOOP)
    parent_id: Optional[int] = None
    ref: Optional[Span] = None

    @property
    def is_noop(self) -> bool:
        return self.outcome.is_noop

    def intersect(self, low: int, high: int) -> bool:
        """Whether this event overlaps the half-open window [low, high)."""
        return self.source.low <= high and low < self.source.high

    @classmethod
    def from_record(cls, record: Any) -> Event:
        """Build an Event from one persisted trace record."""
        if not isinstance(record, dict):
            raise MalformedEvent(record, "record is not an object")
        for key in ("id", "source", "stage"):
            if key not in record:
                raise MalformedEvent(record, f"missing field '{key}'")

        event_id = record["id"]
        parent_id = record.get("parent_id")
        if not isinstance(event_id, int) or isinstance(event_id, bool):
            raise MalformedEvent(record, "id must be an integer")
        if parent_id is not None and (not isinstance(parent_id, int) or isinstance(parent_id, bool)):
            raise MalformedEvent(record, "parent_id must be an integer or null")
        if not isinstance(record["stage"], str):
            raise MalformedEvent(record, "stage must be a string")

        ok = record.get("ok")
        error = record.get("error")
        if ok is not None and error is not None:
            raise MalformedEvent(record, f"event {event_id} has both ok and error")
        if ok is not None:
            outcome = Outcome.ok(str(ok))
        elif error is not None:
            outcome = Outcome.error(str(error))
        else:
            outcome = Outcome.noop()

        ref = record.get("ref")
        return cls(
            id=event_id,
            source=Span.from_json(record["source"]),
            stage=record["stage"],
            outcome=outcome,
            parent_id=parent_id,
            ref=Span.from_json(ref) if ref is not None else None,
        )

    def to_record(self) -> dict[str, Any]:
        """Inverse of from_record(), in the persisted trace shape."""
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "source": self.source.to_json(),
            "stage": self.stage,
            "ok": self.outcome.text if self.outcome.kind == OutcomeKind.OK else None,
            "error": self.outcome.text if self.outcome.kind == OutcomeKind.ERROR else None,
            "ref": self.ref.to_json() if self.ref is not None else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Event #{self.id} {self.stage} "
            f"[{self.source.low}:{self.source.high}] {self.outcome.kind.value}>"
        )


# ============================================================================
# Trace (Event Store)
# ============================================================================

def events_for_stage(events: Iterable[Event], stage: str) -> list[Event]:
    """The sub-sequence emitted by one compiler stage, order preserved."""
    return [e for e in events if e.stage == stage]


class Trace:
    """The ordered event sequence of one compiler run."""

    def __init__(self, events: Iterable[Event]) -> None:
        self._events: tuple[Event, ...] = tuple(events)

    @classmethod
    def from_records(cls, records: Iterable[Any]) -> Trace:
        return cls(Event.from_record(r) for r in records)

    @classmethod
    def load(cls, path: Union[str, Path]) -> Trace:
        """Load a trace.json file (a JSON list of event records)."""
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            records = json.load(f)
        if not isinstance(records, list):
            raise MalformedEvent(records, f"{path} does not contain a list of events")
        trace = cls.from_records(records)
        logger.info("Loaded %d events from %s", len(trace), path)
        return trace

    @property
    def events(self) -> tuple[Event, ...]:
        return self._events

    def stages(self) -> list[str]:
        """Stage tags present in the trace, in first-seen order."""
        seen: dict[str, None] = {}
        for e in self._events:
            seen.setdefault(e.stage, None)
        return list(seen)

    def for_stage(self, stage: str) -> list[Event]:
        """The sub-sequence emitted by one compiler stage, order preserved."""
        return events_for_stage(self._events, stage)

    def find(self, low: int, high: int) -> list[Event]:
        """Events generated while processing text that overlaps [low, high)."""
        return [e for e in self._events if e.intersect(low, high)]

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return f"<Trace: {len(self._events)} events, stages={self.stages()}>"
