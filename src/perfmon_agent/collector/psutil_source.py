"""Counter source backed by psutil, for hosts without PDH or WMI."""

from __future__ import annotations

import time
from typing import Any, Callable

import psutil

from ..config import CounterSpec, QueryType, is_default_namespace
from .base import (
    CollectionError,
    CounterSource,
    EventSubscription,
    MetricSample,
    SourceUnavailable,
    event_type_for,
)

TOTAL = "_Total"

Readings = dict[str, float]
StateKey = tuple[CounterSpec, str, str]


def _cpu_total(times) -> float:
    # guest time is already counted in user and nice on Linux
    return sum(times) - getattr(times, "guest", 0.0) - getattr(times, "guest_nice", 0.0)


class PsutilSource(CounterSource):
    """Answers the common standard performance counters from psutil.

    Supported categories are ``Processor``, ``Memory``, ``System``,
    ``Network Interface`` and ``PhysicalDisk``. ``/sec`` counters are
    rates between two reads of the same counter, so the first read of each
    one yields no value. Processor percentages compare against the previous
    read of the same spec and counter, or against boot on the first read.
    Every spec keeps its own baselines. WMI queries and subscriptions are
    not available.
    """

    def __init__(self, host: str) -> None:
        self._host = host
        self._prev: dict[StateKey, tuple[float, float]] = {}
        self._cpu_prev: dict[StateKey, tuple[Any, float]] = {}
        self._categories: dict[str, Callable[[CounterSpec, str, str], Readings]] = {
            "processor": self._processor,
            "memory": self._memory,
            "system": self._system,
            "network interface": self._network,
            "physicaldisk": self._disk,
        }

    @property
    def name(self) -> str:
        return "psutil"

    def read(self, spec: CounterSpec) -> list[MetricSample]:
        if spec.query_type is not QueryType.PERF_COUNTER or not is_default_namespace(spec.query_namespace):
            raise SourceUnavailable(f"{spec.query_type.value} in {spec.query_namespace} needs WMI")

        reader = self._categories.get(spec.category.lower())
        if reader is None:
            raise CollectionError(f"unsupported category {spec.category!r}")

        now = time.time()
        per_instance: dict[str, dict[str, float]] = {}
        for fld in spec.counters:
            readings = reader(spec, fld.counter.lower(), spec.instance)
            for instance, value in readings.items():
                per_instance.setdefault(instance, {})[fld.output_name] = value

        samples: list[MetricSample] = []
        for instance, values in per_instance.items():
            samples.append(MetricSample(
                event_type=event_type_for(spec),
                provider=spec.provider,
                values=dict(values),
                host=self._host,
                timestamp=now,
                labels={"instance": instance} if instance else {},
            ))
        return samples

    def subscribe(self, spec: CounterSpec) -> EventSubscription:
        raise SourceUnavailable("WMI event subscriptions are only available on Windows")

    def _rate(self, key: StateKey, total: float) -> float | None:
        now = time.monotonic()
        prev = self._prev.get(key)
        self._prev[key] = (total, now)
        if prev is None or now <= prev[1]:
            return None
        return (total - prev[0]) / (now - prev[1])

    @staticmethod
    def _select(instance: str, available: dict[str, float]) -> Readings:
        if instance == "*":
            return available
        key = instance or TOTAL
        if key not in available:
            raise CollectionError(f"instance {instance!r} not found")
        return {instance: available[key]}

    def _cpu_share(self, key: StateKey, times, field: str) -> float:
        prev = self._cpu_prev.get(key)
        if prev is None:
            elapsed, spent = _cpu_total(times), getattr(times, field)
        else:
            prev_times, prev_share = prev
            elapsed = _cpu_total(times) - _cpu_total(prev_times)
            if elapsed <= 0:
                return prev_share
            spent = getattr(times, field) - getattr(prev_times, field)
        share = min(100.0, max(0.0, spent / elapsed * 100.0)) if elapsed > 0 else 0.0
        self._cpu_prev[key] = (times, share)
        return share

    def _processor(self, spec: CounterSpec, counter: str, instance: str) -> Readings:
        fields = {
            "% processor time": ("idle", True),
            "% user time": ("user", False),
            "% privileged time": ("system", False),
            "% idle time": ("idle", False),
        }
        if counter not in fields:
            raise CollectionError(f"unsupported Processor counter {counter!r}")
        field, busy = fields[counter]

        snapshots = {TOTAL: psutil.cpu_times()}
        for idx, times in enumerate(psutil.cpu_times(percpu=True)):
            snapshots[str(idx)] = times

        available: Readings = {}
        for name, times in snapshots.items():
            share = self._cpu_share((spec, counter, name), times, field)
            available[name] = 100.0 - share if busy else share
        return self._select(instance, available)

    def _memory(self, spec: CounterSpec, counter: str, instance: str) -> Readings:
        mem = psutil.virtual_memory()
        fields = {
            "available bytes": float(mem.available),
            "available kbytes": mem.available / 1024.0,
            "available mbytes": mem.available / (1024.0 * 1024.0),
            "committed bytes": float(mem.used),
            "% committed bytes in use": float(mem.percent),
        }
        if counter not in fields:
            raise CollectionError(f"unsupported Memory counter {counter!r}")
        return {"": fields[counter]}

    def _system(self, spec: CounterSpec, counter: str, instance: str) -> Readings:
        if counter == "processes":
            return {"": float(len(psutil.pids()))}
        if counter == "system up time":
            return {"": time.time() - psutil.boot_time()}
        raise CollectionError(f"unsupported System counter {counter!r}")

    def _network(self, spec: CounterSpec, counter: str, instance: str) -> Readings:
        fields = {
            "bytes sent/sec": lambda n: n.bytes_sent,
            "bytes received/sec": lambda n: n.bytes_recv,
            "bytes total/sec": lambda n: n.bytes_sent + n.bytes_recv,
        }
        fn = fields.get(counter)
        if fn is None:
            raise CollectionError(f"unsupported Network Interface counter {counter!r}")
        counters = psutil.net_io_counters(pernic=True)
        totals = {iface: float(fn(nio)) for iface, nio in counters.items() if iface != "lo"}
        totals[TOTAL] = sum(totals.values())
        return self._rates(spec, counter, self._select(instance, totals))

    def _disk(self, spec: CounterSpec, counter: str, instance: str) -> Readings:
        fields = {
            "disk read bytes/sec": lambda d: d.read_bytes,
            "disk write bytes/sec": lambda d: d.write_bytes,
            "disk reads/sec": lambda d: d.read_count,
            "disk writes/sec": lambda d: d.write_count,
        }
        fn = fields.get(counter)
        if fn is None:
            raise CollectionError(f"unsupported PhysicalDisk counter {counter!r}")
        counters = psutil.disk_io_counters(perdisk=True) or {}
        totals = {disk: float(fn(dio)) for disk, dio in counters.items()}
        totals[TOTAL] = sum(totals.values())
        return self._rates(spec, counter, self._select(instance, totals))

    def _rates(self, spec: CounterSpec, counter: str, totals: Readings) -> Readings:
        rates: Readings = {}
        for instance, total in totals.items():
            rate = self._rate((spec, counter, instance), total)
            if rate is not None:
                rates[instance] = rate
        return rates
