# dagsmith/logging.py
from __future__ import annotations

import logging
import os

import typer

LOG = logging.getLogger("dagsmith")
SQL_LOG = logging.getLogger("dagsmith.sql")


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a child of the `dagsmith` logger (or the root package logger)."""
    return LOG.getChild(name) if name else LOG


def setup_logging(verbose: int = 0, quiet: int = 0) -> None:
    """
    Map verbosity to levels:
      -q        → ERROR
       (default)→ WARNING
      -v        → INFO
      -vv       → DEBUG
    Also wires the SQL channel and honours DAGSMITH_SQL_DEBUG.
    """
    eff_level_threshold = 2
    eff = max(min(verbose - quiet, 2), -1)
    lvl = {-1: logging.ERROR, 0: logging.WARNING, 1: logging.INFO, 2: logging.DEBUG}[eff]

    logging.basicConfig(level=lvl, format="%(levelname)s %(name)s %(message)s")
    LOG.setLevel(lvl)

    sql_debug_env = os.getenv("DAGSMITH_SQL_DEBUG") == "1"
    SQL_LOG.setLevel(
        logging.DEBUG if (eff >= eff_level_threshold or sql_debug_env) else logging.WARNING
    )


def echo(msg: str = "", *, err: bool = False) -> None:
    """User-facing output (progress lines, summaries)."""
    typer.echo(msg, err=err)


def echo_debug(msg: str) -> None:
    """SQL previews; only visible with -vv or DAGSMITH_SQL_DEBUG=1."""
    if SQL_LOG.isEnabledFor(logging.DEBUG) or os.getenv("DAGSMITH_SQL_DEBUG") == "1":
        SQL_LOG.debug(msg)


__all__ = ["LOG", "SQL_LOG", "echo", "echo_debug", "get_logger", "setup_logging"]
