"""Windows counter source: PDH performance counters and WMI queries/events."""

from __future__ import annotations

import logging
import platform
import threading
import time
from typing import Any

import pythoncom
import pywintypes
import win32pdh
import wmi

from ..config import CounterSpec, QueryType
from .base import (
    CollectionError,
    CounterSource,
    EventSubscription,
    MetricSample,
    SubscriptionError,
    Value,
    event_type_for,
)

logger = logging.getLogger(__name__)


def _to_value(raw: Any) -> Value:
    if isinstance(raw, (int, float)):
        return raw
    return str(raw)


def _object_values(spec: CounterSpec, obj: Any) -> dict[str, Value]:
    """Pick the configured properties (or all of them) from a WMI object."""
    if spec.counters:
        names = [(f.counter, f.output_name) for f in spec.counters]
    else:
        names = [(prop, prop) for prop in obj.properties]
    values: dict[str, Value] = {}
    for prop, output_name in names:
        raw = getattr(obj, prop, None)
        if raw is not None:
            values[output_name] = _to_value(raw)
    return values


class WmiSubscription(EventSubscription):
    """Wraps a ``wmi`` watcher created by ``watch_for(raw_wql=...)``."""

    def __init__(self, watcher: Any, spec: CounterSpec, host: str) -> None:
        self._watcher = watcher
        self._spec = spec
        self._host = host

    def next(self, timeout: float) -> list[MetricSample] | None:
        try:
            event = self._watcher(timeout_ms=int(timeout * 1000))
        except wmi.x_wmi_timed_out:
            return None
        except wmi.x_wmi as exc:
            raise SubscriptionError(str(exc)) from exc
        try:
            values = _object_values(self._spec, event)
        except pywintypes.com_error as exc:
            raise CollectionError(str(exc)) from exc
        return [MetricSample(
            event_type=event_type_for(self._spec),
            provider=self._spec.provider,
            values=values,
            host=self._host,
            timestamp=time.time(),
        )]


class WindowsSource(CounterSource):
    """Reads counters from the local or a remote Windows host.

    COM, WMI connections and PDH queries are kept per thread: each unit
    initializes its own apartment and owns its handles.
    """

    def __init__(self, computer_name: str) -> None:
        self._computer = computer_name
        self._local = threading.local()
        self._remote = computer_name.lower() != platform.node().lower()

    @property
    def name(self) -> str:
        return "windows"

    @property
    def _machine(self) -> str | None:
        return f"\\\\{self._computer}" if self._remote else None

    def _ensure_com(self) -> None:
        if not getattr(self._local, "com", False):
            pythoncom.CoInitialize()
            self._local.com = True
            self._local.connections = {}
            self._local.pdh = {}

    def _connection(self, namespace: str) -> Any:
        self._ensure_com()
        connections = self._local.connections
        if namespace not in connections:
            kwargs: dict[str, Any] = {"namespace": namespace}
            if self._remote:
                kwargs["computer"] = self._computer
            connections[namespace] = wmi.WMI(**kwargs)
        return connections[namespace]

    def read(self, spec: CounterSpec) -> list[MetricSample]:
        if spec.query_type is QueryType.PERF_COUNTER:
            return self._read_perf(spec)
        return self._read_query(spec)

    def subscribe(self, spec: CounterSpec) -> EventSubscription:
        try:
            watcher = self._connection(spec.query_namespace).watch_for(raw_wql=spec.query)
        except (wmi.x_wmi, pywintypes.com_error) as exc:
            raise SubscriptionError(f"{spec.query_namespace}: {exc}") from exc
        return WmiSubscription(watcher, spec, self._computer)

    def _read_query(self, spec: CounterSpec) -> list[MetricSample]:
        try:
            rows = self._connection(spec.query_namespace).query(spec.query)
            now = time.time()
            return [
                MetricSample(
                    event_type=event_type_for(spec),
                    provider=spec.provider,
                    values=_object_values(spec, row),
                    host=self._computer,
                    timestamp=now,
                )
                for row in rows
            ]
        except (wmi.x_wmi, pywintypes.com_error) as exc:
            raise CollectionError(f"{spec.query_namespace}: {exc}") from exc

    def _counter(self, path: str) -> tuple[Any, Any]:
        """Open (once per thread) a PDH query holding the counter at *path*."""
        self._ensure_com()
        handles = self._local.pdh
        if path not in handles:
            query = win32pdh.OpenQuery()
            counter = win32pdh.AddCounter(query, path)
            # rate counters need a first collection to have a baseline
            win32pdh.CollectQueryData(query)
            handles[path] = (query, counter)
        return handles[path]

    def _instances(self, category: str) -> list[str | None]:
        try:
            win32pdh.EnumObjects(None, self._machine, win32pdh.PERF_DETAIL_WIZARD, True)
            _, instances = win32pdh.EnumObjectItems(
                None, self._machine, category, win32pdh.PERF_DETAIL_WIZARD,
            )
        except pywintypes.error as exc:
            raise CollectionError(f"{category}: {exc.strerror}") from exc
        return list(instances) or [None]

    def _read_perf(self, spec: CounterSpec) -> list[MetricSample]:
        wildcard = spec.instance == "*"
        instances = self._instances(spec.category) if wildcard else [spec.instance or None]
        now = time.time()
        samples: list[MetricSample] = []
        for instance in instances:
            values: dict[str, Value] = {}
            for fld in spec.counters:
                path = win32pdh.MakeCounterPath(
                    (self._machine, spec.category, instance, None, -1, fld.counter),
                )
                try:
                    query, counter = self._counter(path)
                    win32pdh.CollectQueryData(query)
                    _, value = win32pdh.GetFormattedCounterValue(counter, win32pdh.PDH_FMT_DOUBLE)
                except pywintypes.error as exc:
                    if not wildcard:
                        raise CollectionError(f"{path}: {exc.strerror}") from exc
                    logger.debug("Skipping %s: %s", path, exc.strerror)
                    continue
                values[fld.output_name] = value
            if values:
                samples.append(MetricSample(
                    event_type=event_type_for(spec),
                    provider=spec.provider,
                    values=values,
                    host=self._computer,
                    timestamp=now,
                    labels={"instance": instance} if instance else {},
                ))
        return samples
