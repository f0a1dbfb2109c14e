"""Configuration and logging setup for thorns."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-18s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings, read from the environment at construction time."""

    log_level: str = field(default_factory=lambda: os.getenv("THORNS_LOG_LEVEL", "WARNING"))

    # File names inside a run directory
    trace_file: str = field(default_factory=lambda: os.getenv("THORNS_TRACE_FILE", "trace.json"))
    sourcemap_file: str = field(
        default_factory=lambda: os.getenv("THORNS_SOURCEMAP_FILE", "sourcemap.json")
    )

    # Raise MalformedReference instead of recording unresolved links
    strict_links: bool = field(default_factory=lambda: _env_flag("THORNS_STRICT_LINKS"))

    def validate(self) -> None:
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(
                f"Unknown log level '{self.log_level}'. Expected one of {', '.join(LOG_LEVELS)}"
            )
        if not self.trace_file or not self.sourcemap_file:
            raise ValueError("trace_file and sourcemap_file must be non-empty")


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure the root logger with a stderr stream handler.

    No-op when the root logger already has handlers (e.g. under pytest).
    """
    if log_level is None:
        log_level = os.getenv("THORNS_LOG_LEVEL", "WARNING")

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    logging.getLogger("networkx").setLevel(logging.WARNING)
