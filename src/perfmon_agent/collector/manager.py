"""Dispatcher that runs every execution group in its own thread."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Union

from ..config import CounterSpec, Options
from ..exporter.base import BaseExporter, EmissionError
from ..log import VERBOSE, format_payload
from .base import CounterSource
from .classifier import ExecutionGroups, Strategy
from .event import EventWorker, RetryPolicy
from .interval import IntervalWorker

_logger = logging.getLogger(__name__)

Worker = Union[IntervalWorker, EventWorker]


@dataclass
class Unit:
    """A started worker and the thread that runs it."""

    name: str
    strategy: Strategy
    worker: Worker
    thread: threading.Thread

    @property
    def specs(self) -> tuple[CounterSpec, ...]:
        return self.worker.specs


class Dispatcher:
    """Starts one unit per event-group entry plus one for the interval batch.

    Units run until :meth:`stop` (signal-driven shutdown) or until they fail.
    A unit that dies takes nothing else down, except when the output stream
    fails: that :class:`EmissionError` is re-raised from :meth:`wait`.
    """

    def __init__(
        self,
        options: Options,
        groups: ExecutionGroups,
        source: CounterSource,
        emitter: BaseExporter,
        logger: logging.Logger | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._options = options
        self._groups = groups
        self._source = source
        self._emitter = emitter
        self._logger = logger or _logger
        self._retry = retry
        self._units: list[Unit] = []
        self._done = threading.Event()
        self._fatal: EmissionError | None = None
        self._lock = threading.Lock()

    @property
    def units(self) -> list[Unit]:
        return list(self._units)

    def _build_worker(self, spec: CounterSpec, strategy: Strategy) -> Worker:
        if strategy is Strategy.EVENT_SUBSCRIPTION:
            return EventWorker(
                spec, self._source, self._emitter, logger=self._logger, retry=self._retry,
            )
        return IntervalWorker(
            [spec],
            self._source,
            self._emitter,
            self._options.interval_seconds,
            logger=self._logger,
            name=f"poll-{spec.provider}",
        )

    def _supervise(self, unit_name: str, worker: Worker) -> None:
        try:
            worker.run()
        except EmissionError as exc:
            self._logger.error("%s: output stream failed, shutting down: %s", unit_name, exc)
            with self._lock:
                if self._fatal is None:
                    self._fatal = exc
        except Exception:
            self._logger.exception("%s terminated unexpectedly", unit_name)
        else:
            self._logger.info("%s finished", unit_name)
        finally:
            self._done.set()

    def _start_unit(self, name: str, strategy: Strategy, worker: Worker) -> None:
        thread = threading.Thread(
            target=self._supervise, args=(name, worker), name=name, daemon=True,
        )
        self._units.append(Unit(name=name, strategy=strategy, worker=worker, thread=thread))
        thread.start()

    def start(self) -> None:
        """Log the startup summary and start every unit."""
        if self._units:
            return
        self._logger.info(format_payload("perfmon-agent starting with options", asdict(self._options)))
        self._logger.log(
            VERBOSE,
            format_payload(
                "perfmon-agent counters",
                {
                    "event": [
                        {"strategy": e.strategy.value, **e.spec.to_dict()}
                        for e in self._groups.event
                    ],
                    "interval": [s.to_dict() for s in self._groups.interval],
                },
            ),
        )

        for entry in self._groups.event:
            worker = self._build_worker(entry.spec, entry.strategy)
            self._start_unit(worker.name, entry.strategy, worker)

        if self._groups.interval:
            worker = IntervalWorker(
                self._groups.interval,
                self._source,
                self._emitter,
                self._options.interval_seconds,
                logger=self._logger,
            )
            self._start_unit(worker.name, Strategy.BATCH_POLL, worker)

        self._logger.info("Started %d collection unit(s)", len(self._units))

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every unit has ended; returns ``False`` on timeout.

        Raises the first :class:`EmissionError` any unit hit; the other units
        are stopped before it propagates.
        """
        remaining = timeout
        while True:
            self._done.clear()
            with self._lock:
                fatal = self._fatal
            if fatal is not None:
                self.stop()
                raise fatal
            if not any(u.thread.is_alive() for u in self._units):
                return True
            if remaining is not None and remaining <= 0:
                return False
            step = 0.5 if remaining is None else min(0.5, remaining)
            self._done.wait(step)
            if remaining is not None:
                remaining -= step

    def run(self) -> None:
        self.start()
        self.wait()

    def stop(self, join_timeout: float = 5.0) -> None:
        """Ask every unit to finish and join their threads."""
        for unit in self._units:
            unit.worker.stop()
        for unit in self._units:
            if unit.thread is not threading.current_thread():
                unit.thread.join(timeout=join_timeout)
        self._logger.info("Dispatcher stopped")
