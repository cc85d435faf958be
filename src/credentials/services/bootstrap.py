"""Process wiring: builds the certificate store, ticket manager and their caches."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from shared.config import Settings, settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics
from shared.tracing import setup_tracing

from credentials.cache import MemoryCache
from credentials.certificates import CertificateStore
from credentials.certificates.crypto import load_encryption_key
from credentials.domain.models import AccessTicket, TenantCertificate, TicketKey
from credentials.tickets import DiskTicketCache, TicketCacheManager, WsaaTransport

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Long-lived components of one process."""

    certificates: CertificateStore
    tickets: TicketCacheManager
    transport: WsaaTransport

    async def aclose(self) -> None:
        await self.transport.aclose()


def build_runtime(config: Settings = settings, http: httpx.AsyncClient | None = None) -> Runtime:
    """Construct the components from configuration.

    Raises:
        CryptoError: If ``CERT_ENCRYPTION_KEY`` is set but is not a Fernet key.
    """
    certificate_cache: MemoryCache[int, TenantCertificate] = MemoryCache()
    ticket_cache: MemoryCache[TicketKey, AccessTicket] = MemoryCache()

    certificates = CertificateStore(
        config.CERTS_PATH,
        certificate_cache,
        encryption_key=load_encryption_key(config.CERT_ENCRYPTION_KEY),
    )
    transport = WsaaTransport(config.wsaa_url, http=http, timeout=config.WSAA_TIMEOUT_SECONDS)
    tickets = TicketCacheManager(
        certificates,
        transport,
        ticket_cache,
        DiskTicketCache(config.TICKET_CACHE_PATH),
        safety_margin=timedelta(minutes=config.TICKET_SAFETY_MARGIN_MINUTES),
        signing_request_ttl=timedelta(hours=config.SIGNING_REQUEST_TTL_HOURS),
        default_service=config.DEFAULT_SERVICE,
    )

    logger.info(
        "runtime_built",
        extra={
            "environment": config.AFIP_ENVIRONMENT,
            "wsaa_url": config.wsaa_url,
            "certs_path": str(config.CERTS_PATH),
            "ticket_cache_path": str(config.TICKET_CACHE_PATH),
            "passphrase_encryption": config.CERT_ENCRYPTION_KEY is not None,
        },
    )
    return Runtime(certificates=certificates, tickets=tickets, transport=transport)


@asynccontextmanager
async def lifespan(config: Settings = settings) -> AsyncGenerator[Runtime, None]:
    # Startup
    setup_logging(config.LOG_LEVEL)
    setup_tracing(config.APP_NAME)
    setup_metrics(config.APP_NAME, config.AFIP_ENVIRONMENT, console=not config.is_production)

    LoggingInstrumentor().instrument(set_logging_format=True)
    HTTPXClientInstrumentor().instrument()

    runtime = build_runtime(config)
    try:
        yield runtime
    finally:
        # Shutdown
        await runtime.aclose()
        logger.info("runtime_closed")
