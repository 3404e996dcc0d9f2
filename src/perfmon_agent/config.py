"""Counter list loading and run options for perfmon_agent."""

from __future__ import annotations

import enum
import logging
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "root\\cimv2"
POLLING_INTERVAL_FLOOR_MS = 10000
DEFAULT_COMPUTER_NAME = "ThisComputer"
DEFAULT_CONFIG_FILE = "config.json"


class ConfigError(Exception):
    """Raised when the counter configuration cannot be used at all."""


class QueryType(str, enum.Enum):
    """How a counter is read from the host."""

    PERF_COUNTER = "perfcounter"
    WMI_QUERY = "wmi_query"
    WMI_EVENT = "wmi_eventlistener"


def is_default_namespace(namespace: str) -> bool:
    """Exact, case-sensitive match; any other spelling routes as non-default."""
    return namespace == DEFAULT_NAMESPACE


@dataclass(frozen=True)
class CounterField:
    """One value read from a counter source, with its output alias."""

    counter: str
    attrname: str = ""

    @property
    def output_name(self) -> str:
        return self.attrname or self.counter


@dataclass(frozen=True)
class CounterSpec:
    """A configured measurement. Immutable for the life of the process."""

    provider: str
    query_type: QueryType = QueryType.PERF_COUNTER
    query_namespace: str = DEFAULT_NAMESPACE
    category: str = ""
    instance: str = ""
    query: str = ""
    counters: tuple[CounterField, ...] = ()
    event_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "querytype": self.query_type.value,
            "querynamespace": self.query_namespace,
            "category": self.category,
            "instance": self.instance,
            "query": self.query,
            "counters": [
                {"counter": f.counter, "attrname": f.attrname} for f in self.counters
            ],
            "eventname": self.event_name,
        }


@dataclass(frozen=True)
class Options:
    """Process-wide run configuration, fixed after startup resolution."""

    config_file: str = DEFAULT_CONFIG_FILE
    polling_interval: int = POLLING_INTERVAL_FLOOR_MS
    computer_name: str = DEFAULT_COMPUTER_NAME
    verbose: bool = False
    otlp_endpoint: str = ""

    @property
    def interval_seconds(self) -> float:
        return self.polling_interval / 1000.0


@dataclass
class OtelExporterConfig:
    """OpenTelemetry forwarding settings."""

    endpoint: str = "http://localhost:4318"
    service_name: str = "perfmon-agent"
    headers: dict[str, str] = field(default_factory=dict)
    export_interval_ms: int = POLLING_INTERVAL_FLOOR_MS


def _parse_fields(raw: Any) -> tuple[CounterField, ...]:
    fields: list[CounterField] = []
    for item in raw or []:
        if isinstance(item, str):
            fields.append(CounterField(counter=item))
        elif isinstance(item, dict) and item.get("counter"):
            fields.append(CounterField(
                counter=str(item["counter"]),
                attrname=str(item.get("attrname") or ""),
            ))
        else:
            raise ValueError(f"invalid counter entry: {item!r}")
    return tuple(fields)


def counter_spec_from_dict(data: Mapping[str, Any]) -> CounterSpec:
    """Build a :class:`CounterSpec` from one ``counterlist`` record.

    ``querytype`` defaults to ``wmi_query`` when the record carries a
    ``query`` and to ``perfcounter`` otherwise.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"counter entry must be a mapping, got {type(data).__name__}")

    query = str(data.get("query") or "")
    raw_type = data.get("querytype") or (
        QueryType.WMI_QUERY.value if query else QueryType.PERF_COUNTER.value
    )
    try:
        query_type = QueryType(str(raw_type).lower())
    except ValueError:
        raise ValueError(f"unknown querytype {raw_type!r}") from None

    category = str(data.get("category") or "")
    counters = _parse_fields(data.get("counters"))
    provider = str(data.get("provider") or category or query_type.value)

    if query_type is QueryType.PERF_COUNTER:
        if not category or not counters:
            raise ValueError(f"perfcounter entry {provider!r} needs a category and counters")
    elif not query:
        raise ValueError(f"{query_type.value} entry {provider!r} needs a query")

    return CounterSpec(
        provider=provider,
        query_type=query_type,
        query_namespace=str(data.get("querynamespace") or DEFAULT_NAMESPACE),
        category=category,
        instance=str(data.get("instance") or ""),
        query=query,
        counters=counters,
        event_name=str(data.get("eventname") or ""),
    )


def load_counters(path: str | Path) -> list[CounterSpec]:
    """Load the ordered ``counterlist`` from a JSON (or YAML) config file.

    Invalid entries are skipped with a warning. Raises :class:`ConfigError`
    when the file cannot be read or no usable counter remains.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8-sig") as fh:
            loaded = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"{path} could not be found or opened.") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path} could not be parsed: {exc}") from exc

    raw_counters = loaded.get("counterlist") if isinstance(loaded, dict) else None
    if not raw_counters or not isinstance(raw_counters, list):
        raise ConfigError(
            f"'counterlist' is empty. Please verify {path} is in the expected format."
        )

    specs: list[CounterSpec] = []
    for idx, entry in enumerate(raw_counters):
        try:
            specs.append(counter_spec_from_dict(entry))
        except ValueError as exc:
            logger.warning("Skipping counterlist entry %d: %s", idx, exc)

    if not specs:
        raise ConfigError(f"No usable entries in 'counterlist' of {path}.")
    return specs


def resolve_options(
    config_file: str = DEFAULT_CONFIG_FILE,
    polling_interval: int = POLLING_INTERVAL_FLOOR_MS,
    computer_name: str = DEFAULT_COMPUTER_NAME,
    verbose: bool = False,
    otlp_endpoint: str = "",
    environ: Mapping[str, str] | None = None,
) -> Options:
    """Combine CLI values with environment overrides.

    Environment variables win over CLI values. ``POLLINGINTERVAL`` is only
    honored when it parses as an integer. The interval floor is applied last,
    whatever the source of the value.
    """
    if environ is None:
        environ = os.environ

    computer_name = environ.get("COMPUTERNAME") or computer_name
    if not computer_name or computer_name == DEFAULT_COMPUTER_NAME:
        computer_name = platform.node()

    config_file = environ.get("CONFIGFILE") or config_file

    env_interval = environ.get("POLLINGINTERVAL")
    if env_interval:
        try:
            polling_interval = int(env_interval)
        except ValueError:
            logger.warning("Ignoring non-integer POLLINGINTERVAL=%r", env_interval)
    polling_interval = max(polling_interval, POLLING_INTERVAL_FLOOR_MS)

    otlp_endpoint = environ.get("OTLP_ENDPOINT") or otlp_endpoint

    return Options(
        config_file=config_file,
        polling_interval=polling_interval,
        computer_name=computer_name,
        verbose=verbose,
        otlp_endpoint=otlp_endpoint,
    )
