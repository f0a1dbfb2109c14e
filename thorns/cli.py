#!/usr/bin/env python3
"""
Thorns: compiler trace graphs and build-to-build diffs

Command-line interface over a compiler target directory (trace.json +
sourcemap.json).

Usage:
    thorns stages <dir>                        List compiler stages in a trace
    thorns graph <dir> --stage parser          Build and summarize a stage graph
    thorns find <dir> <low> <high>             Events overlapping an offset window
    thorns files <dir>                         List project files
    thorns span <dir> <low> <high>             Print source text for a window
    thorns diff --left A --right B --stage S   Diff two runs of the same stage
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Optional

from thorns.config import Settings, setup_logging
from thorns.core import Run, open_run
from thorns.diff import diff_report, format_diffs
from thorns.errors import ThornsError
from thorns.sourcemap import span_from_window
from thorns.trace import OutcomeKind

logger = logging.getLogger(__name__)


# ============================================================================
# Formatting helpers
# ============================================================================

class C:
    """ANSI colors."""
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    RESET = "\033[0m"

    @staticmethod
    def off():
        C.BOLD = C.DIM = C.RED = C.GREEN = C.YELLOW = C.CYAN = C.RESET = ""


def header(text: str) -> str:
    return f"\n{C.BOLD}{C.CYAN}{'─' * 60}{C.RESET}\n{C.BOLD}  {text}{C.RESET}\n{C.BOLD}{C.CYAN}{'─' * 60}{C.RESET}"


def ok(text: str) -> str:
    return f"  {C.GREEN}✓{C.RESET} {text}"


def warn(text: str) -> str:
    return f"  {C.YELLOW}⚠{C.RESET} {text}"


def fail(text: str) -> str:
    return f"  {C.RED}✗{C.RESET} {text}"


def outcome_label(kind: OutcomeKind) -> str:
    if kind == OutcomeKind.OK:
        return f"{C.GREEN}ok{C.RESET}"
    if kind == OutcomeKind.ERROR:
        return f"{C.RED}error{C.RESET}"
    return f"{C.DIM}noop{C.RESET}"


def load(args, directory: str) -> Run:
    return open_run(directory, settings=args.settings, source_root=args.source_root)


# ============================================================================
# Commands
# ============================================================================

def cmd_stages(args) -> int:
    """List the compiler stages present in a trace."""
    run = load(args, args.dir)
    print(header(f"STAGES: {run.origin}"))
    for stage in run.stages():
        print(f"  {C.BOLD}{stage}{C.RESET}  {C.DIM}{len(run.trace.for_stage(stage))} events{C.RESET}")
    return 0


def cmd_graph(args) -> int:
    """Build the merged graph for one stage."""
    run = load(args, args.dir)
    print(header(f"GRAPH: {run.origin} [{args.stage}]"))

    graph = run.graph(args.stage)
    if graph is None:
        print(fail(f"No events for stage '{args.stage}'"))
        return 1

    for line in graph.summary().splitlines():
        print(f"  {line}")

    if graph.unresolved:
        print(warn(f"{len(graph.unresolved)} link(s) could not be resolved"))

    if args.output:
        Path(args.output).write_text(json.dumps(graph.to_dict(), indent=2))
        print(ok(f"Saved to {args.output}"))
    return 0


def cmd_find(args) -> int:
    """Show events overlapping an offset window."""
    run = load(args, args.dir)
    print(header(f"FIND: [{args.low}:{args.high}] in {run.origin}"))

    events = run.trace.find(args.low, args.high)
    if args.stage:
        events = [e for e in events if e.stage == args.stage]
    if not events:
        print(warn("No events overlap this window"))
        return 0

    for e in events:
        text = e.outcome.text or ""
        print(
            f"  {C.CYAN}#{e.id:<6}{C.RESET} {e.stage:14s} "
            f"[{e.source.low}:{e.source.high}]  {outcome_label(e.outcome.kind)}  {C.DIM}{text}{C.RESET}"
        )
    return 0


def cmd_files(args) -> int:
    """List the files of the project."""
    run = load(args, args.dir)
    print(header(f"FILES: {run.origin}"))
    for index, file in run.source_map.files():
        span = run.source_map.file_offset_range(file)
        print(f"  [{index:3d}] {file}  {C.DIM}[{span.low}:{span.high}]{C.RESET}")
    return 0


def cmd_span(args) -> int:
    """Print the source text covered by an offset window."""
    run = load(args, args.dir)
    span = span_from_window(args.low, args.high)
    for file, fspan in run.source_map.files_in_span(span):
        logger.debug("Files in span: %s [%d:%d]", file, fspan.low, fspan.high)
    print(run.source_map.text_in_span(span))
    return 0


def cmd_diff(args) -> int:
    """Diff one compiler stage across two runs."""
    left_run = load(args, args.left)
    right_run = load(args, args.right)

    print(header(f"DIFF: {left_run.origin} ↔ {right_run.origin} [{args.stage}]"))

    left = left_run.graph(args.stage)
    right = right_run.graph(args.stage)
    if left is None or right is None:
        side = args.left if left is None else args.right
        print(fail(f"No events for stage '{args.stage}' in {side}"))
        return 1

    report = diff_report(left, left_run.source_map, right, right_run.source_map)

    if report.unpaired_roots:
        print(warn(f"{report.unpaired_roots} root(s) have no counterpart and were not compared"))
    if report.resolver_failures:
        print(warn(f"{len(report.resolver_failures)} source lookup(s) failed"))

    if report.identical:
        print(ok(f"No divergence across {report.pairs_compared} compared pairs"))
    else:
        print(fail(f"{len(report)} divergence(s) across {report.pairs_compared} compared pairs"))
        print(format_diffs(left, left_run.source_map, right, right_run.source_map, report.pairs))

    if args.output:
        out = [
            {
                "left": d.left.index,
                "right": d.right.index,
                "kind": d.kind.value,
                "left_span": left.node(d.left).source.to_json(),
                "right_span": right.node(d.right).source.to_json(),
            }
            for d in report.divergences
        ]
        Path(args.output).write_text(json.dumps(out, indent=2))
        print(ok(f"Saved to {args.output}"))

    return 0 if report.identical else 1


# ============================================================================
# CLI setup
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="thorns",
        description="Thorns: compiler trace graphs and build-to-build diffs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""
        examples:
          thorns stages ./target
          thorns graph ./target --stage parser -o parser.json
          thorns find ./target 120 180 --stage lexer
          thorns span ./target 120 180
          thorns diff --left ./baseline --right ./target --stage type-resolver
        """),
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log progress (-v info, -vv debug)")
    parser.add_argument("--source-root", help="Base directory for relative source map paths")

    sub = parser.add_subparsers(dest="command", help="Command to run")

    # stages
    p = sub.add_parser("stages", help="List compiler stages in a trace")
    p.add_argument("dir", help="Compiler target directory")

    # graph
    p = sub.add_parser("graph", help="Build the event graph for a stage")
    p.add_argument("dir", help="Compiler target directory")
    p.add_argument("--stage", required=True, help="lexer, parser, type-resolver, llvm, ...")
    p.add_argument("-o", "--output", help="Save graph JSON to file")

    # find
    p = sub.add_parser("find", help="Events overlapping an offset window")
    p.add_argument("dir", help="Compiler target directory")
    p.add_argument("low", type=int)
    p.add_argument("high", type=int)
    p.add_argument("--stage", help="Only show events from this stage")

    # files
    p = sub.add_parser("files", help="List project files")
    p.add_argument("dir", help="Compiler target directory")

    # span
    p = sub.add_parser("span", help="Print source text for an offset window")
    p.add_argument("dir", help="Compiler target directory")
    p.add_argument("low", type=int)
    p.add_argument("high", type=int)

    # diff
    p = sub.add_parser("diff", help="Diff a compiler stage across two runs")
    p.add_argument("--left", required=True, help="The left side of the comparison")
    p.add_argument("--right", required=True, help="The right side of the comparison")
    p.add_argument("--stage", required=True,
                   help="Which compiler stage to diff: lexer, parser, type-resolver, llvm")
    p.add_argument("-o", "--output", help="Save divergences as JSON")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color:
        C.off()

    settings = Settings()
    if args.verbose:
        settings.log_level = "DEBUG" if args.verbose > 1 else "INFO"
    setup_logging(settings.log_level)
    args.settings = settings

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "stages": cmd_stages,
        "graph": cmd_graph,
        "find": cmd_find,
        "files": cmd_files,
        "span": cmd_span,
        "diff": cmd_diff,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args)
    except FileNotFoundError as e:
        print(fail(f"File not found: {e}"))
        return 1
    except (ThornsError, ValueError) as e:
        print(fail(f"Error: {e}"))
        return 1


if __name__ == "__main__":
    sys.exit(main())
