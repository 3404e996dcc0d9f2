"""Fixed-interval polling of a batch of counters."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Sequence

from ..config import CounterSpec
from ..exporter.base import BaseExporter
from .base import CollectionError, CounterSource, MetricSample

_logger = logging.getLogger(__name__)


def next_cycle(deadline: float, now: float, period: float) -> tuple[float, float]:
    """Return ``(next_deadline, delay)`` after a cycle that was due by *deadline*.

    Cycle starts stay aligned to the period. When a cycle overran its slot the
    next one starts immediately and alignment restarts from *now*.
    """
    if now >= deadline:
        return now + period, 0.0
    return deadline + period, deadline - now


class IntervalWorker:
    """Polls every counter in *specs* once per period and emits each cycle.

    The period is used as given; the floor is applied when options are
    resolved.
    """

    def __init__(
        self,
        specs: Sequence[CounterSpec],
        source: CounterSource,
        emitter: BaseExporter,
        interval_seconds: float,
        logger: logging.Logger | None = None,
        name: str = "interval-batch",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.specs = tuple(specs)
        self.name = name
        self._source = source
        self._emitter = emitter
        self._interval = interval_seconds
        self._logger = logger or _logger
        self._clock = clock
        self._stop_event = threading.Event()

    def collect_once(self) -> list[MetricSample]:
        """Read every counter once; failed counters are left out."""
        samples: list[MetricSample] = []
        for spec in self.specs:
            try:
                samples.extend(self._source.read(spec))
            except CollectionError as exc:
                self._logger.warning("Counter %s failed: %s", spec.provider, exc)
            except Exception:
                self._logger.exception("Counter %s failed", spec.provider)
        return samples

    def run_cycle(self) -> list[MetricSample]:
        """Collect one cycle and hand it to the emitter as a single emission."""
        samples = self.collect_once()
        if samples:
            self._emitter.export(samples)
        else:
            self._logger.debug("%s: nothing collected this cycle", self.name)
        return samples

    def run(self) -> None:
        """Poll until :meth:`stop` is called."""
        self._logger.info(
            "%s polling %d counter(s) every %.1fs",
            self.name, len(self.specs), self._interval,
        )
        deadline = self._clock() + self._interval
        while not self._stop_event.is_set():
            self.run_cycle()
            deadline, delay = next_cycle(deadline, self._clock(), self._interval)
            if delay > 0:
                self._stop_event.wait(delay)

    def stop(self) -> None:
        self._stop_event.set()
