"""Standing WMI event subscriptions, one counter per worker."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ..config import CounterSpec
from ..exporter.base import BaseExporter
from .base import (
    CollectionError,
    CounterSource,
    EventSubscription,
    SourceUnavailable,
    SubscriptionError,
)

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for (re)establishing a subscription."""

    initial_seconds: float = 1.0
    factor: float = 2.0
    maximum_seconds: float = 60.0
    attempts: int = 5

    def delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return min(self.initial_seconds * self.factor ** (attempt - 1), self.maximum_seconds)


class EventWorker:
    """Emits samples for one WMI event spec as events arrive.

    A subscription that cannot be opened is retried under *retry*; once the
    attempts are used up, or the source reports the mechanism is gone, this
    worker ends and nothing else is affected.
    """

    def __init__(
        self,
        spec: CounterSpec,
        source: CounterSource,
        emitter: BaseExporter,
        logger: logging.Logger | None = None,
        retry: RetryPolicy | None = None,
        name: str | None = None,
        poll_timeout: float = 1.0,
    ) -> None:
        self.spec = spec
        self.specs = (spec,)
        self.name = name or f"event-{spec.provider}"
        self._source = source
        self._emitter = emitter
        self._logger = logger or _logger
        self._retry = retry or RetryPolicy()
        self._poll_timeout = poll_timeout
        self._stop_event = threading.Event()

    def _subscribe(self) -> EventSubscription | None:
        attempt = 0
        while not self._stop_event.is_set():
            try:
                return self._source.subscribe(self.spec)
            except SubscriptionError as exc:
                attempt += 1
                if attempt >= self._retry.attempts:
                    self._logger.error(
                        "%s: subscription failed after %d attempts, giving up: %s",
                        self.name, attempt, exc,
                    )
                    return None
                delay = self._retry.delay(attempt)
                self._logger.error(
                    "%s: subscription failed (%s), retrying in %.1fs", self.name, exc, delay,
                )
                self._stop_event.wait(delay)
        return None

    def _listen(self, subscription: EventSubscription) -> None:
        """Emit events until stopped or the subscription drops."""
        while not self._stop_event.is_set():
            try:
                samples = subscription.next(self._poll_timeout)
            except (SubscriptionError, SourceUnavailable):
                raise
            except CollectionError as exc:
                self._logger.warning("%s: event could not be read: %s", self.name, exc)
                continue
            if samples:
                self._emitter.export(samples)

    def run(self) -> None:
        """Subscribe and emit until stopped or the subscription is lost for good."""
        self._logger.info("%s listening: %s", self.name, self.spec.query)
        try:
            while not self._stop_event.is_set():
                subscription = self._subscribe()
                if subscription is None:
                    return
                try:
                    self._listen(subscription)
                except SubscriptionError as exc:
                    self._logger.error("%s: subscription dropped: %s", self.name, exc)
                finally:
                    subscription.close()
        except SourceUnavailable as exc:
            self._logger.error("%s: event source unavailable, stopping: %s", self.name, exc)

    def stop(self) -> None:
        self._stop_event.set()
