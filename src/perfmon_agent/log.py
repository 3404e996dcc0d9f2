"""Logging setup for perfmon_agent.

Standard output carries only the JSON records written by the emitter, so
log records never go there. Verbose mode sends everything to stderr,
prefixed with the thread name. Otherwise records from INFO up go to the
Windows event log (stderr on other platforms) and VERBOSE records are
dropped.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from typing import Any

VERBOSE = logging.DEBUG
EVENT_LOG_SOURCE = "perfmon-agent"

logging.addLevelName(VERBOSE, "VERBOSE")


def _system_handler() -> logging.Handler:
    if sys.platform == "win32":
        return logging.handlers.NTEventLogHandler(EVENT_LOG_SOURCE)
    return logging.StreamHandler(sys.stderr)


def configure_logging(verbose: bool = False) -> None:
    """Install the process-wide handlers, replacing any previous setup."""
    if verbose:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(threadName)s : %(message)s",
        ))
        logging.basicConfig(level=VERBOSE, handlers=[handler], force=True)
        return

    system = _system_handler()
    system.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logging.basicConfig(level=logging.INFO, handlers=[system], force=True)


def format_payload(message: str, payload: Any) -> str:
    """Message followed by *payload* as indented JSON."""
    return f"{message}:\n{json.dumps(payload, indent=2, default=str)}"
