"""Shared fakes: an in-memory counter source and event subscription."""

import io
import json
import logging
import queue
import time
from collections import namedtuple

import psutil
import pytest

from perfmon_agent.collector.base import (
    CounterSource,
    EventSubscription,
    MetricSample,
    event_type_for,
)
from perfmon_agent.config import CounterField, CounterSpec, QueryType
from perfmon_agent.exporter.stream import MetricEmitter


def _sample(spec, value):
    return MetricSample(
        event_type=event_type_for(spec),
        provider=spec.provider,
        values={"value": value},
        host="testhost",
        timestamp=time.time(),
    )


class FakeSubscription(EventSubscription):
    """Delivers whatever is put on its queue; exceptions are raised."""

    def __init__(self, events, spec):
        self._events = events
        self._spec = spec
        self.closed = False

    def next(self, timeout):
        try:
            item = self._events.get(timeout=timeout)
        except queue.Empty:
            return None
        if isinstance(item, Exception):
            raise item
        return [_sample(self._spec, item)]

    def close(self):
        self.closed = True


class FakeSource(CounterSource):
    """Counter source driven by test data.

    ``values[provider]`` is the value returned by :meth:`read` (or an
    exception to raise). ``subscribe_errors[provider]`` lists exceptions
    raised by successive :meth:`subscribe` calls before one succeeds.
    """

    def __init__(self):
        self.values = {}
        self.subscribe_errors = {}
        self.events = {}
        self.reads = []
        self.subscriptions = []

    @property
    def name(self):
        return "fake"

    def read(self, spec):
        self.reads.append(spec.provider)
        value = self.values.get(spec.provider, 1.0)
        if isinstance(value, Exception):
            raise value
        return [_sample(spec, value)]

    def subscribe(self, spec):
        errors = self.subscribe_errors.get(spec.provider)
        if errors:
            raise errors.pop(0)
        sub = FakeSubscription(self.events.setdefault(spec.provider, queue.Queue()), spec)
        self.subscriptions.append(sub)
        return sub


class CollectingStream(io.StringIO):
    """StringIO that can report the JSON records written to it."""

    def records(self):
        return [json.loads(line) for line in self.getvalue().splitlines() if line]


def perf_spec(provider, namespace="root\\cimv2"):
    return CounterSpec(
        provider=provider,
        category="Processor",
        instance="_Total",
        counters=(CounterField("% Processor Time", "cpuPercent"),),
        query_namespace=namespace,
    )


def event_spec(provider, namespace="root\\cimv2"):
    return CounterSpec(
        provider=provider,
        query_type=QueryType.WMI_EVENT,
        query_namespace=namespace,
        query="SELECT * FROM __InstanceCreationEvent WITHIN 1 WHERE TargetInstance ISA 'Win32_Process'",
    )


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def stream():
    return CollectingStream()


@pytest.fixture
def emitter(stream):
    return MetricEmitter(stream)


CpuTimes = namedtuple("CpuTimes", "user system idle")


class ScriptedCpuTimes:
    """Stands in for ``psutil.cpu_times``; returns ``now`` until it is moved on."""

    def __init__(self, now):
        self.now = now
        self.calls = 0

    def __call__(self, percpu=False):
        self.calls += 1
        return [self.now] if percpu else self.now


@pytest.fixture
def cpu_times(monkeypatch):
    scripted = ScriptedCpuTimes(CpuTimes(user=10.0, system=10.0, idle=80.0))
    monkeypatch.setattr(psutil, "cpu_times", scripted)
    return scripted


def wait_for(predicate, timeout=5.0):
    """Poll *predicate* until it is true or *timeout* expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def restore_root_logger():
    """Undo handler changes made by ``configure_logging``."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
