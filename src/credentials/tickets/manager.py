"""Access ticket lifecycle: read-through caching, acquisition and invalidation."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from opentelemetry import trace

from credentials.cache import MemoryCache
from credentials.certificates import CertificateStore
from credentials.domain.models import AccessTicket, SigningRequest, TicketKey, utc_now
from credentials.domain.states import CacheScope, TicketSource, TicketState
from credentials.metrics import credentials_metrics
from credentials.tickets.cache import DiskTicketCache
from credentials.tickets.errors import MissingCertificateError, TicketError, TicketResult
from credentials.tickets.protocol import interpret_login_response
from credentials.tickets.signing import encode_cms, sign_login_request
from credentials.tickets.transport import WsaaTransport

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_SERVICE = "wsfe"


class TicketCacheManager:
    """Hands out access tickets per (tenant, service).

    Lookups go memory, then disk, then the authority. Concurrent requests for
    the same key share a single acquisition, so the authority sees at most one
    login request per key at a time.
    """

    def __init__(
        self,
        certificates: CertificateStore,
        transport: WsaaTransport,
        memory_cache: MemoryCache[TicketKey, AccessTicket],
        disk_cache: DiskTicketCache,
        safety_margin: timedelta = timedelta(minutes=5),
        signing_request_ttl: timedelta = timedelta(hours=12),
        default_service: str = DEFAULT_SERVICE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._certificates = certificates
        self._transport = transport
        self._memory = memory_cache
        self._disk = disk_cache
        self.safety_margin = safety_margin
        self.signing_request_ttl = signing_request_ttl
        self.default_service = default_service
        self._clock = clock
        self._inflight: dict[TicketKey, asyncio.Future[AccessTicket]] = {}

    async def get_ticket(self, tenant_id: int, service: str | None = None) -> AccessTicket:
        """Return a fresh ticket for the tenant and service.

        Raises:
            TicketError: Any failure to produce a ticket; see the subclasses.
        """
        ticket, _ = await self._resolve(tenant_id, service or self.default_service)
        return ticket

    async def request_ticket(self, tenant_id: int, service: str | None = None) -> TicketResult:
        """Like :meth:`get_ticket`, but reports failures inside the result."""
        try:
            ticket, source = await self._resolve(tenant_id, service or self.default_service)
        except TicketError as e:
            return TicketResult(error=e)
        return TicketResult(ticket=ticket, source=source)

    def ticket_state(self, tenant_id: int, service: str | None = None) -> TicketState:
        """State of the cached ticket, without contacting the authority."""
        key = (tenant_id, service or self.default_service)
        ticket = self._memory.get(key) or self._disk.load(key)
        if ticket is None:
            return TicketState.ABSENT
        return ticket.state(self._clock(), self.safety_margin)

    def clear_cache(self, tenant_id: int | None = None, service: str | None = None) -> int:
        """Drop cached tickets from both tiers.

        With a tenant and a service only that key goes; with a tenant alone every
        service of the tenant; otherwise everything. Returns the number of
        entries removed across both tiers.
        """
        with tracer.start_as_current_span("TicketCacheManager.clear_cache") as span:
            if tenant_id is not None and service is not None:
                scope = CacheScope.KEY
                key = (tenant_id, service)
                removed_memory = 1 if self._memory.pop(key) is not None else 0
                removed_disk = 1 if self._disk.delete(key) else 0
            elif tenant_id is not None:
                scope = CacheScope.TENANT
                removed_memory = len(self._memory.pop_matching(lambda k: k[0] == tenant_id))
                removed_disk = self._disk.delete_for_tenant(tenant_id)
            else:
                scope = CacheScope.GLOBAL
                removed_memory = self._memory.clear()
                removed_disk = self._disk.clear()

            span.set_attribute("scope", scope.value)
            if removed_memory:
                credentials_metrics.record_ticket_evicted("memory", scope.value, removed_memory)
            if removed_disk:
                credentials_metrics.record_ticket_evicted("disk", scope.value, removed_disk)

            logger.info(
                "ticket_cache_cleared",
                extra={
                    "scope": scope.value,
                    "tenant_id": tenant_id,
                    "service": service,
                    "memory_entries": removed_memory,
                    "disk_entries": removed_disk,
                },
            )
            return removed_memory + removed_disk

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve(self, tenant_id: int, service: str) -> tuple[AccessTicket, TicketSource]:
        key = (tenant_id, service)
        with tracer.start_as_current_span("TicketCacheManager.get_ticket") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("service", service)

            try:
                ticket = self._from_memory(key)
                source = TicketSource.MEMORY
                if ticket is None:
                    ticket = self._from_disk(key)
                    source = TicketSource.DISK
                if ticket is None:
                    ticket = await self._join_or_acquire(key)
                    source = TicketSource.AUTHORITY
            except TicketError as e:
                span.set_attribute("error.kind", e.kind)
                credentials_metrics.record_ticket_error(e.kind, service)
                raise

            span.set_attribute("source", source.value)
            credentials_metrics.record_ticket_served(source.value, service)
            return ticket, source

    def _from_memory(self, key: TicketKey) -> AccessTicket | None:
        ticket = self._memory.get(key)
        if ticket is None:
            return None
        if ticket.is_usable(self._clock(), self.safety_margin):
            return ticket
        self._memory.pop(key)
        credentials_metrics.record_ticket_evicted("memory", "stale")
        logger.info(
            "ticket_stale_in_memory",
            extra={
                "tenant_id": key[0],
                "service": key[1],
                "expiration": ticket.expiration_time.isoformat(),
            },
        )
        return None

    def _from_disk(self, key: TicketKey) -> AccessTicket | None:
        path = self._disk.path_for(key)
        if not path.exists():
            return None
        ticket = self._disk.load(key)
        if ticket is not None and ticket.is_usable(self._clock(), self.safety_margin):
            self._memory.set(key, ticket)
            logger.info("ticket_loaded_from_disk", extra={"tenant_id": key[0], "service": key[1]})
            return ticket

        reason = "unreadable" if ticket is None else "stale"
        if self._disk.delete(key):
            credentials_metrics.record_ticket_evicted("disk", reason)
        logger.info(
            "ticket_record_discarded",
            extra={"tenant_id": key[0], "service": key[1], "reason": reason},
        )
        return None

    async def _join_or_acquire(self, key: TicketKey) -> AccessTicket:
        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._acquire(key))
            self._inflight[key] = pending
            pending.add_done_callback(lambda done: self._finish_inflight(key, done))
        else:
            credentials_metrics.record_inflight_join(key[1])
            logger.debug(
                "ticket_acquisition_joined", extra={"tenant_id": key[0], "service": key[1]}
            )
        # A cancelled waiter must not cancel the acquisition others depend on
        return await asyncio.shield(pending)

    def _finish_inflight(self, key: TicketKey, done: asyncio.Future[AccessTicket]) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]
        # Mark the outcome as retrieved even if every waiter was cancelled
        if not done.cancelled():
            done.exception()

    async def _acquire(self, key: TicketKey) -> AccessTicket:
        tenant_id, service = key
        started = time.perf_counter()
        outcome = "error"
        with tracer.start_as_current_span("TicketCacheManager.acquire") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("service", service)
            try:
                # Store I/O and RSA signing stay off the event loop
                certificate = await asyncio.to_thread(self._certificates.lookup, tenant_id)
                if certificate is None:
                    outcome = "missing_certificate"
                    raise MissingCertificateError(tenant_id)

                request = SigningRequest.create(
                    service, now=self._clock(), ttl=self.signing_request_ttl
                )
                cms = await asyncio.to_thread(
                    sign_login_request,
                    request.to_xml(),
                    certificate.certificate_pem,
                    certificate.private_key_pem,
                )

                logger.info(
                    "ticket_acquisition_started",
                    extra={
                        "tenant_id": tenant_id,
                        "service": service,
                        "unique_id": request.unique_id,
                        "url": self._transport.url,
                    },
                )
                response = await self._transport.login_cms(encode_cms(cms))
                ticket = interpret_login_response(
                    response.status_code, response.content, tenant_id, service
                )
                outcome = "success"
            except TicketError as e:
                if outcome == "error":
                    outcome = e.kind
                logger.error(
                    "ticket_acquisition_failed",
                    extra={"tenant_id": tenant_id, "service": service, "kind": e.kind},
                )
                raise
            finally:
                credentials_metrics.record_ticket_acquisition(
                    time.perf_counter() - started, outcome
                )

            self._memory.set(key, ticket)
            self._persist(ticket)
            span.set_attribute("expiration", ticket.expiration_time.isoformat())
            logger.info(
                "ticket_acquired",
                extra={
                    "tenant_id": tenant_id,
                    "service": service,
                    "expiration": ticket.expiration_time.isoformat(),
                },
            )
            return ticket

    def _persist(self, ticket: AccessTicket) -> None:
        try:
            self._disk.save(ticket)
        except OSError as e:
            credentials_metrics.record_disk_write_failed()
            logger.warning(
                "ticket_record_write_failed",
                extra={
                    "tenant_id": ticket.tenant_id,
                    "service": ticket.target_service,
                    "error": str(e),
                },
            )
