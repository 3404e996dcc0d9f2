"""Partitioning of the configured counters into execution groups."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable

from ..config import CounterSpec, QueryType, is_default_namespace


class Strategy(enum.Enum):
    """Execution strategy, chosen once per counter at startup."""

    EVENT_SUBSCRIPTION = "event-subscription"
    DEDICATED_POLL = "dedicated-poll"
    BATCH_POLL = "batch-poll"


@dataclass(frozen=True)
class EventEntry:
    """A counter that runs in its own unit."""

    spec: CounterSpec
    strategy: Strategy


@dataclass
class ExecutionGroups:
    """The event group (one unit per entry) and the shared interval batch."""

    event: list[EventEntry] = field(default_factory=list)
    interval: list[CounterSpec] = field(default_factory=list)


def strategy_for(spec: CounterSpec) -> Strategy:
    """Pick the execution strategy for *spec*.

    Any counter outside the default namespace gets its own unit, even when it
    is a plain query and not an event listener.
    """
    if spec.query_type is QueryType.WMI_EVENT:
        return Strategy.EVENT_SUBSCRIPTION
    if not is_default_namespace(spec.query_namespace):
        return Strategy.DEDICATED_POLL
    return Strategy.BATCH_POLL


def classify(specs: Iterable[CounterSpec]) -> ExecutionGroups:
    """Split *specs* into execution groups, preserving input order."""
    groups = ExecutionGroups()
    for spec in specs:
        strategy = strategy_for(spec)
        if strategy is Strategy.BATCH_POLL:
            groups.interval.append(spec)
        else:
            groups.event.append(EventEntry(spec=spec, strategy=strategy))
    return groups
