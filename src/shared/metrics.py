from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource


def setup_metrics(
    app_name: str,
    environment: str | None = None,
    console: bool = True,
) -> MeterProvider:
    """Configure OpenTelemetry metrics and return the installed provider.

    ``environment`` is the tax authority environment (homologacion or
    produccion) and is attached to every series.
    """
    attributes = {"service.name": app_name}
    if environment:
        attributes["deployment.environment"] = environment
    resource = Resource.create(attributes)

    # Prometheus (pull model); the embedding process exposes /metrics
    readers: list[MetricReader] = [PrometheusMetricReader()]
    if console:
        readers.append(PeriodicExportingMetricReader(ConsoleMetricExporter()))

    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)
    return provider
