"""Stream exporter - writes one JSON record per emission to the output stream."""

from __future__ import annotations

import json
import logging
import sys
import threading
from typing import Any, Callable, TextIO

from .. import __version__
from ..collector.base import MetricSample
from .base import BaseExporter, EmissionError

logger = logging.getLogger(__name__)

INTEGRATION_NAME = "com.perfmon-agent.perfmon"
PROTOCOL_VERSION = "1"


class MetricEmitter(BaseExporter):
    """Serializes sample batches and writes them to a shared stream.

    Every unit calls :meth:`export` from its own thread. The lock makes each
    record a single uninterrupted write, and it is the only place where
    output from different units is ordered. Secondary sinks registered with
    :meth:`add_sink` are fed under the same lock after the primary write.
    """

    def __init__(self, stream: TextIO | None = None, *, pretty: bool = False) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._pretty = pretty
        self._lock = threading.Lock()
        self._sinks: list[Callable[[list[MetricSample]], None]] = []

    def add_sink(self, sink: Callable[[list[MetricSample]], None]) -> None:
        """Register a callback to receive every emitted batch."""
        self._sinks.append(sink)

    def build_record(self, samples: list[MetricSample]) -> dict[str, Any]:
        return {
            "name": INTEGRATION_NAME,
            "protocol_version": PROTOCOL_VERSION,
            "integration_version": __version__,
            "metrics": [s.to_dict() for s in samples],
        }

    def export(self, samples: list[MetricSample]) -> None:
        record = self.build_record(samples)
        text = json.dumps(record, indent=2 if self._pretty else None, default=str)
        with self._lock:
            try:
                self._stream.write(text + "\n")
                self._stream.flush()
            except (OSError, ValueError) as exc:
                logger.error("Output stream failed: %s", exc)
                raise EmissionError(str(exc)) from exc
            for sink in self._sinks:
                try:
                    sink(samples)
                except Exception:
                    logger.exception("Sink failed")

    def shutdown(self) -> None:
        with self._lock:
            try:
                self._stream.flush()
            except (OSError, ValueError) as exc:
                logger.warning("Output stream flush failed at shutdown: %s", exc)
        logger.info("MetricEmitter shut down")
