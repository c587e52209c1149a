"""
OpenTelemetry Metrics

Counters and histograms for the outbox write, dispatch and scan paths.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

from .tracing import DEFAULT_SERVICE_NAME

logger = logging.getLogger(__name__)

# Global meter
_meter: Optional[metrics.Meter] = None

# Metric instruments
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}


def init_metrics(
    service_name: str = DEFAULT_SERVICE_NAME,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds

    Returns:
        Configured meter
    """
    global _meter

    readers = []

    if otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        readers.append(PeriodicExportingMetricReader(
            otlp_exporter,
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter(service_name)
    _init_outbox_metrics()

    logger.info(f"OTel metrics initialized: {service_name}")
    return _meter


def _init_outbox_metrics():
    """Create the outbox instruments on the current meter."""
    meter = get_meter()

    _counters["outbox_records_written_total"] = meter.create_counter(
        "outbox_records_written_total",
        description="Outbox records committed by the writer",
        unit="1"
    )

    _counters["outbox_dispatch_total"] = meter.create_counter(
        "outbox_dispatch_total",
        description="Notify attempts by transport, outcome and path",
        unit="1"
    )

    _counters["outbox_scan_batches_total"] = meter.create_counter(
        "outbox_scan_batches_total",
        description="Non-empty batches picked up by reconciliation scans",
        unit="1"
    )

    _histograms["outbox_dispatch_duration_seconds"] = meter.create_histogram(
        "outbox_dispatch_duration_seconds",
        description="Notify call duration including the status update",
        unit="s"
    )


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(DEFAULT_SERVICE_NAME)
    return _meter


def record_counter(
    name: str,
    value: int = 1,
    attributes: Dict[str, Any] = None
):
    """Record a counter metric. No-op until init_metrics() ran."""
    if name in _counters:
        _counters[name].add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Dict[str, Any] = None
):
    """Record a histogram metric. No-op until init_metrics() ran."""
    if name in _histograms:
        _histograms[name].record(value, attributes or {})
