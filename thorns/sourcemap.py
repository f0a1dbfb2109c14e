"""
Thorns Source Map

Maps spans of the virtual address space back to literal source text.
The compiler assigns each project file a global offset range; a span
may cross file boundaries, in which case the per-file slices are joined
in address order.

Any object with a `text_in_span(span) -> str` method can act as a source
resolver for the diff engine; SourceMap is the file-backed one.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

from thorns.errors import InvalidSpan, MalformedSourceMap, SourceReadFailure, SourceUnavailable
from thorns.trace import Span

logger = logging.getLogger(__name__)


class SourceResolver(Protocol):
    """What the diff engine needs from a source map."""

    def text_in_span(self, span: Span) -> str:
        ...


@dataclass(frozen=True)
class SourceMapEntry:
    """One project file and the global offset range it occupies."""
    source: str
    span: Span

    def __repr__(self) -> str:
        return f"<{self.source} [{self.span.low}:{self.span.high}]>"


class SourceMap:
    """File-backed source resolver.

    Usage:
        sm = SourceMap.load("target/sourcemap.json")
        sm.files_in_span(Span(10, 80))
        sm.text_in_span(Span(10, 80))
    """

    def __init__(
        self,
        entries: list[SourceMapEntry],
        root: Optional[Union[str, Path]] = None,
    ) -> None:
        self._entries = list(entries)
        self._root = Path(root) if root is not None else None
        # Later entries for the same path win, matching a dict rebuild
        self._ranges: dict[str, Span] = {e.source: e.span for e in self._entries}

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        root: Optional[Union[str, Path]] = None,
    ) -> SourceMap:
        """Load a sourcemap.json file: a list of {"source", "span"} objects.

        Relative file paths are resolved against `root` (default: the
        current directory, as the compiler records them).
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, list):
            raise MalformedSourceMap(raw, f"{path} does not contain a list of source map entries")

        entries = []
        for item in raw:
            if not isinstance(item, dict) or "source" not in item or "span" not in item:
                raise MalformedSourceMap(item, f"entry in {path} needs \"source\" and \"span\"")
            entries.append(SourceMapEntry(str(item["source"]), Span.from_json(item["span"])))

        logger.info("Loaded source map with %d files from %s", len(entries), path)
        return cls(entries, root=root)

    # ------------------------------------------------------------------
    # File listing
    # ------------------------------------------------------------------

    def files(self) -> list[tuple[int, str]]:
        """All files in the hosted project as (index, path)."""
        return [(i, e.source) for i, e in enumerate(self._entries)]

    def file(self, index: int) -> str:
        """Look up a file path by index."""
        if not 0 <= index < len(self._entries):
            raise SourceUnavailable(f"file #{index}")
        return self._entries[index].source

    def file_offset_range(self, file: str) -> Span:
        """The global offset range assigned to `file`."""
        try:
            return self._ranges[file]
        except KeyError:
            raise SourceUnavailable(file) from None

    def file_contents(self, index: int) -> tuple[str, Span]:
        """Full text of a project file together with its offset range."""
        file = self.file(index)
        path = self._resolve(file)
        try:
            # Bytes, not text mode: offsets index the file as written
            text = path.read_bytes().decode("utf-8")
        except (OSError, ValueError) as e:
            raise SourceReadFailure(str(path), str(e)) from e
        return text, self.file_offset_range(file)

    def files_in_span(self, span: Span) -> list[tuple[str, Span]]:
        """Files whose range intersects `span`, in address order."""
        hits = [(f, s) for f, s in self._ranges.items() if s.intersects(span)]
        hits.sort(key=lambda item: item[1])
        return hits

    # ------------------------------------------------------------------
    # Text extraction
    # ------------------------------------------------------------------

    def text_in_span(self, span: Span) -> str:
        """The literal source text covered by `span`.

        Raises:
            SourceUnavailable: no file covers any part of the span
            SourceReadFailure: a covering file could not be read or decoded
        """
        files = self.files_in_span(span)
        if not files:
            raise SourceUnavailable(span)
        return "".join(self._read_span(f, fspan, span) for f, fspan in files)

    def _resolve(self, file: str) -> Path:
        path = Path(file)
        if self._root is not None and not path.is_absolute():
            path = self._root / path
        return path

    def _read_span(self, file: str, fspan: Span, read_span: Span) -> str:
        overlap = fspan.intersection(read_span)
        if overlap is None:
            raise SourceReadFailure(file, f"{read_span!r} does not overlap {fspan!r}")

        local_low = overlap.low - fspan.low
        length = overlap.high - overlap.low
        path = self._resolve(file)

        try:
            with path.open("rb") as f:
                f.seek(local_low)
                buf = f.read(length)
        except (OSError, ValueError) as e:
            raise SourceReadFailure(str(path), str(e)) from e

        if len(buf) != length:
            raise SourceReadFailure(
                str(path), f"unexpected EOF: wanted {length} bytes at {local_low}, got {len(buf)}",
            )
        try:
            return buf.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SourceReadFailure(str(path), f"invalid UTF-8: {e}") from e

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"<SourceMap: {len(self._entries)} files>"


def span_from_window(low: int, high: int) -> Span:
    """Validate a [low, high) request window as the span endpoints expect it."""
    if high <= low:
        raise InvalidSpan((low, high), "window must have high > low")
    return Span(low, high)
