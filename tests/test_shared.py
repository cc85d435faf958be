from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from credentials.cache import MemoryCache
from credentials.certificates.crypto import CryptoError, generate_fernet_key
from credentials.services.bootstrap import build_runtime, lifespan
from shared.config import Settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics
from shared.tracing import setup_tracing


def test_setup_logging():
    """Test that setup_logging configures OTel provider."""
    with patch("shared.logging.set_logger_provider") as mock_set_provider, \
         patch("shared.logging.LoggerProvider") as mock_provider_cls, \
         patch("shared.logging.BatchLogRecordProcessor"), \
         patch("shared.logging.ConsoleLogRecordExporter"), \
         patch("shared.logging.LoggingHandler"), \
         patch("shared.logging.logging.getLogger"):

        setup_logging("debug")

        mock_provider_cls.assert_called_once()
        mock_set_provider.assert_called_once()


def test_setup_metrics():
    """Test that setup_metrics configures OTel meter provider."""
    with patch("shared.metrics.MeterProvider") as mock_provider_cls, \
         patch("shared.metrics.metrics.set_meter_provider") as mock_set_provider, \
         patch("shared.metrics.PrometheusMetricReader"), \
         patch("shared.metrics.PeriodicExportingMetricReader"), \
         patch("shared.metrics.ConsoleMetricExporter"):

        setup_metrics("test-app")

        mock_provider_cls.assert_called_once()
        mock_set_provider.assert_called_once()


def test_setup_tracing():
    """Test that setup_tracing installs a tracer provider."""
    with patch("shared.tracing.TracerProvider") as mock_provider_cls, \
         patch("shared.tracing.BatchSpanProcessor"), \
         patch("shared.tracing.ConsoleSpanExporter"), \
         patch("shared.tracing.trace.set_tracer_provider") as mock_set_provider:

        setup_tracing("test-app")

        mock_provider_cls.assert_called_once()
        mock_set_provider.assert_called_once_with(mock_provider_cls.return_value)


class TestSettings:
    """Tests for environment-dependent configuration."""

    def test_homologation_is_default(self):
        config = Settings(_env_file=None)

        assert not config.is_production
        assert config.wsaa_url == config.AFIP_WSAA_URL_HOMOLOGACION
        assert config.DEFAULT_SERVICE == "wsfe"

    def test_production_endpoint(self, monkeypatch):
        monkeypatch.setenv("AFIP_ENVIRONMENT", "produccion")

        config = Settings(_env_file=None)

        assert config.is_production
        assert config.wsaa_url == "https://wsaa.afip.gov.ar/ws/services/LoginCms"


class TestBootstrap:
    """Tests for process wiring."""

    def test_build_runtime(self, tmp_path):
        config = Settings(
            _env_file=None,
            CERTS_PATH=tmp_path / "certs",
            TICKET_CACHE_PATH=tmp_path / "cache",
            TICKET_SAFETY_MARGIN_MINUTES=10,
            CERT_ENCRYPTION_KEY=generate_fernet_key(),
        )

        runtime = build_runtime(config, http=httpx.AsyncClient())

        assert runtime.certificates.base_path == tmp_path / "certs"
        assert runtime.tickets.safety_margin == timedelta(minutes=10)
        assert runtime.transport.url == config.AFIP_WSAA_URL_HOMOLOGACION

    def test_caches_are_not_shared_between_runtimes(self, tmp_path):
        config = Settings(_env_file=None, CERTS_PATH=tmp_path, TICKET_CACHE_PATH=tmp_path)

        first = build_runtime(config)
        second = build_runtime(config)

        assert isinstance(first.certificates._cache, MemoryCache)
        assert first.certificates._cache is not second.certificates._cache
        assert first.tickets._memory is not second.tickets._memory

    def test_invalid_encryption_key(self, tmp_path):
        config = Settings(_env_file=None, CERTS_PATH=tmp_path, CERT_ENCRYPTION_KEY="nope")

        with pytest.raises(CryptoError):
            build_runtime(config)

    @pytest.mark.asyncio
    async def test_lifespan(self, tmp_path):
        """Test that lifespan sets up observability and closes the client."""
        config = Settings(_env_file=None, CERTS_PATH=tmp_path, TICKET_CACHE_PATH=tmp_path)

        with patch("credentials.services.bootstrap.setup_logging") as mock_logging, \
             patch("credentials.services.bootstrap.setup_tracing") as mock_tracing, \
             patch("credentials.services.bootstrap.setup_metrics") as mock_metrics, \
             patch("credentials.services.bootstrap.LoggingInstrumentor"), \
             patch("credentials.services.bootstrap.HTTPXClientInstrumentor") as mock_httpx:

            async with lifespan(config) as runtime:
                result = await runtime.tickets.request_ticket(1, "wsfe")

            mock_logging.assert_called_once_with(config.LOG_LEVEL)
            mock_tracing.assert_called_once_with(config.APP_NAME)
            mock_metrics.assert_called_once_with(
                config.APP_NAME, config.AFIP_ENVIRONMENT, console=True
            )
            mock_httpx.return_value.instrument.assert_called_once()

        assert result.error is not None
        assert runtime.transport._http.is_closed
