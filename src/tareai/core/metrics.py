"""OpenTelemetry metrics instruments for calendar sync.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Initialization
--------------
Call ``init_metrics(service_name)`` once during startup.  When
OTEL_EXPORTER_OTLP_ENDPOINT is not set, the global no-op MeterProvider is used
and all recordings are silent no-ops.

Instruments
-----------
  tareai.calendar.token_refresh_total     Counter  (label: outcome=ok|failed)
      Access-token refresh attempts against the OAuth token endpoint.

  tareai.calendar.fetch_failures_total    Counter
      Calendars dropped from an aggregated read because their fetch failed.

  tareai.calendar.reconcile_total         Counter  (labels: intent, outcome)
      Task-to-event reconciliations by decided intent and outcome.

  tareai.calendar.trigger_failures_total  Counter
      Background sync jobs that ended with an exception.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "tareai"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics for the service.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise, the global no-op
    MeterProvider is used and all recordings are silent.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


class CalendarMetrics:
    """Lazily-created calendar sync instruments.

    Safe to construct before ``init_metrics`` is called; recordings are no-ops
    until a real provider is installed.
    """

    def __init__(self) -> None:
        self.__refresh: metrics.Counter | None = None
        self.__fetch_failures: metrics.Counter | None = None
        self.__reconcile: metrics.Counter | None = None
        self.__trigger_failures: metrics.Counter | None = None

    @property
    def _refresh(self) -> metrics.Counter:
        if self.__refresh is None:
            self.__refresh = get_meter().create_counter(
                name="tareai.calendar.token_refresh_total",
                description="Access-token refresh attempts",
                unit="refreshes",
            )
        return self.__refresh

    @property
    def _fetch_failures(self) -> metrics.Counter:
        if self.__fetch_failures is None:
            self.__fetch_failures = get_meter().create_counter(
                name="tareai.calendar.fetch_failures_total",
                description="Calendars omitted from an aggregated read after a failed fetch",
                unit="calendars",
            )
        return self.__fetch_failures

    @property
    def _reconcile(self) -> metrics.Counter:
        if self.__reconcile is None:
            self.__reconcile = get_meter().create_counter(
                name="tareai.calendar.reconcile_total",
                description="Task-to-event reconciliations by intent and outcome",
                unit="reconciliations",
            )
        return self.__reconcile

    @property
    def _trigger_failures(self) -> metrics.Counter:
        if self.__trigger_failures is None:
            self.__trigger_failures = get_meter().create_counter(
                name="tareai.calendar.trigger_failures_total",
                description="Background sync jobs that raised",
                unit="jobs",
            )
        return self.__trigger_failures

    def record_refresh(self, ok: bool) -> None:
        self._refresh.add(1, {"outcome": "ok" if ok else "failed"})

    def record_fetch_failure(self) -> None:
        self._fetch_failures.add(1)

    def record_reconcile(self, intent: str, outcome: str) -> None:
        self._reconcile.add(1, {"intent": intent, "outcome": outcome})

    def record_trigger_failure(self) -> None:
        self._trigger_failures.add(1)


calendar_metrics = CalendarMetrics()
