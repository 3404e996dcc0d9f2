"""OpenTelemetry exporter - forwards numeric counter values via OTLP/HTTP."""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

from ..collector.base import MetricSample
from ..config import OtelExporterConfig
from .base import BaseExporter

logger = logging.getLogger(__name__)


def gauge_name(event_type: str, value_name: str) -> str:
    """OTel instrument name for one value of an event type."""
    cleaned = "".join(c if c.isalnum() or c in "._-" else "_" for c in value_name)
    return f"perfmon.{event_type}.{cleaned.strip('_')}"


class OtelExporter(BaseExporter):
    """Records numeric sample values as OpenTelemetry gauges.

    String values are skipped. The SDK's ``PeriodicExportingMetricReader``
    flushes the gauges to the configured OTLP/HTTP endpoint.
    """

    def __init__(self, config: OtelExporterConfig) -> None:
        self._config = config
        resource = Resource.create({SERVICE_NAME: config.service_name})

        exporter_kwargs: dict[str, Any] = {
            "endpoint": f"{config.endpoint.rstrip('/')}/v1/metrics",
        }
        if config.headers:
            exporter_kwargs["headers"] = config.headers

        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(**exporter_kwargs),
            export_interval_millis=config.export_interval_ms,
        )
        self._provider = MeterProvider(resource=resource, metric_readers=[reader])
        self._meter = self._provider.get_meter("perfmon_agent")
        self._gauges: dict[str, Any] = {}

        logger.info(
            "OtelExporter initialized → %s (service=%s)",
            config.endpoint,
            config.service_name,
        )

    def _get_gauge(self, name: str) -> Any:
        if name not in self._gauges:
            self._gauges[name] = self._meter.create_gauge(name=name)
        return self._gauges[name]

    def export(self, samples: list[MetricSample]) -> None:
        for s in samples:
            attributes = {"provider": s.provider, "computer_name": s.host, **s.labels}
            for value_name, value in s.values.items():
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                self._get_gauge(gauge_name(s.event_type, value_name)).set(
                    value, attributes=attributes,
                )

    def shutdown(self) -> None:
        self._provider.shutdown()
        logger.info("OtelExporter shut down")
