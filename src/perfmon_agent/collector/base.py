"""Base interface for counter sources."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Union

from ..config import CounterSpec, QueryType

Value = Union[float, str]


class CollectionError(Exception):
    """A single query failed; the rest of the unit keeps running."""


class SubscriptionError(CollectionError):
    """An event subscription could not be established or was dropped."""


class SourceUnavailable(CollectionError):
    """The instrumentation mechanism behind a counter is gone."""


@dataclass
class MetricSample:
    """One collected entity: a set of named values from one provider."""

    event_type: str
    provider: str
    values: dict[str, Value]
    host: str
    timestamp: float
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into a metric entity for the output record."""
        entity: dict[str, Any] = {
            "event_type": self.event_type,
            "provider": self.provider,
            "computer_name": self.host,
            "timestamp": self.timestamp,
        }
        entity.update(self.labels)
        entity.update(self.values)
        return entity


class EventSubscription(abc.ABC):
    """A standing subscription delivering samples as events arrive."""

    @abc.abstractmethod
    def next(self, timeout: float) -> list[MetricSample] | None:
        """Block up to *timeout* seconds for the next event.

        Returns ``None`` when nothing arrived in time.
        """

    def close(self) -> None:
        """Release the subscription."""


class CounterSource(abc.ABC):
    """Abstract access to the host's counter and WMI subsystems."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Source name used in log messages."""

    @abc.abstractmethod
    def read(self, spec: CounterSpec) -> list[MetricSample]:
        """Read the current values of a perf counter or WMI query spec."""

    @abc.abstractmethod
    def subscribe(self, spec: CounterSpec) -> EventSubscription:
        """Open an event subscription for a WMI event spec."""


def event_type_for(spec: CounterSpec) -> str:
    """Output event type for samples of *spec*."""
    if spec.event_name:
        return spec.event_name
    return {
        QueryType.PERF_COUNTER: "PerfmonSample",
        QueryType.WMI_QUERY: "WMIQueryResult",
        QueryType.WMI_EVENT: "WMIEvent",
    }[spec.query_type]
