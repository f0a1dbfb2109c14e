"""
Thorns Core: Run

A Run is everything one compiler invocation left behind in its target
directory: the event trace and the source map. It is the entry point
for building per-stage graphs.

Usage:
    run = open_run("target/")
    graph = run.graph("parser")
    print(graph.summary())
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from thorns.config import Settings
from thorns.graph import EventGraph, build_graph, merge_noops
from thorns.sourcemap import SourceMap
from thorns.trace import Event, Trace, events_for_stage

logger = logging.getLogger(__name__)


def graph_for_stage(
    events: Iterable[Event],
    stage: str,
    strict: bool = False,
) -> Optional[EventGraph]:
    """Filter to one stage, build, and merge no-ops.

    Returns None when the stage emitted no events.
    """
    staged = events_for_stage(events, stage)
    if not staged:
        logger.info("No events for stage '%s'", stage)
        return None

    logger.info("Graph for %s", stage)
    graph = merge_noops(build_graph(staged, strict=strict))
    logger.info("Nodes: %d", graph.num_nodes)
    logger.info("Edges: %d", graph.num_edges)
    logger.debug("%s", graph.summary())
    return graph


class Run:
    """The trace and source map of one compiler run."""

    def __init__(
        self,
        trace: Trace,
        source_map: SourceMap,
        origin: str = "<memory>",
        settings: Optional[Settings] = None,
    ) -> None:
        self._trace = trace
        self._source_map = source_map
        self._origin = origin
        self._settings = settings or Settings()

    @property
    def trace(self) -> Trace:
        return self._trace

    @property
    def source_map(self) -> SourceMap:
        return self._source_map

    @property
    def origin(self) -> str:
        return self._origin

    def stages(self) -> list[str]:
        return self._trace.stages()

    def graph(self, stage: str) -> Optional[EventGraph]:
        """Build the merged graph for `stage`, or None if it has no events."""
        return graph_for_stage(self._trace, stage, strict=self._settings.strict_links)

    def __repr__(self) -> str:
        return (
            f"<Run: {len(self._trace)} events, {len(self._source_map)} files "
            f"from {self._origin}>"
        )


def open_run(
    directory: Union[str, Path],
    settings: Optional[Settings] = None,
    source_root: Optional[Union[str, Path]] = None,
) -> Run:
    """Load trace and source map from a compiler target directory.

    Args:
        directory: Directory holding the trace and source map files
        settings: File names and strictness (default: from the environment)
        source_root: Base for relative paths in the source map (default: cwd)
    """
    settings = settings or Settings()
    settings.validate()
    directory = Path(directory)

    trace = Trace.load(directory / settings.trace_file)
    source_map = SourceMap.load(directory / settings.sourcemap_file, root=source_root)
    return Run(trace, source_map, origin=str(directory), settings=settings)
