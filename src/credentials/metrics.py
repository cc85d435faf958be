"""OpenTelemetry metrics for the credentials module."""

from opentelemetry import metrics

meter = metrics.get_meter("credentials")

# ============================================================================
# Certificate store
# ============================================================================

certificates_ingested_total = meter.create_counter(
    name="credentials_certificates_ingested_total",
    description="Total certificate uploads persisted",
    unit="1",
)

certificate_ingest_failures_total = meter.create_counter(
    name="credentials_certificate_ingest_failures_total",
    description="Total certificate uploads rejected",
    unit="1",
)

certificate_lookups_total = meter.create_counter(
    name="credentials_certificate_lookups_total",
    description="Total certificate lookups by outcome",
    unit="1",
)

certificates_deleted_total = meter.create_counter(
    name="credentials_certificates_deleted_total",
    description="Total tenant certificate directories purged",
    unit="1",
)

csr_generated_total = meter.create_counter(
    name="credentials_csr_generated_total",
    description="Total certificate signing requests generated",
    unit="1",
)

# ============================================================================
# Access tickets
# ============================================================================

ticket_requests_total = meter.create_counter(
    name="credentials_ticket_requests_total",
    description="Total access ticket requests by source",
    unit="1",
)

ticket_errors_total = meter.create_counter(
    name="credentials_ticket_errors_total",
    description="Total access ticket failures by error kind",
    unit="1",
)

ticket_acquisition_duration = meter.create_histogram(
    name="credentials_ticket_acquisition_duration_seconds",
    description="Duration of a full ticket acquisition against the authority",
    unit="s",
)

ticket_inflight_joins_total = meter.create_counter(
    name="credentials_ticket_inflight_joins_total",
    description="Requests that joined an acquisition already in flight",
    unit="1",
)

ticket_cache_evictions_total = meter.create_counter(
    name="credentials_ticket_cache_evictions_total",
    description="Tickets removed from a cache tier",
    unit="1",
)

ticket_disk_write_failures_total = meter.create_counter(
    name="credentials_ticket_disk_write_failures_total",
    description="Best-effort ticket writes to the disk tier that failed",
    unit="1",
)


class CredentialsMetrics:
    """Facade for credentials metrics with proper labels."""

    def record_certificate_ingested(self, method: str) -> None:
        """Labels: method=pfx|crt-key|crt"""
        certificates_ingested_total.add(1, {"method": method})

    def record_certificate_ingest_failed(self, method: str, reason: str) -> None:
        certificate_ingest_failures_total.add(1, {"method": method, "reason": reason})

    def record_certificate_lookup(self, result: str) -> None:
        """Labels: result=cache|disk|not_found"""
        certificate_lookups_total.add(1, {"result": result})

    def record_certificate_deleted(self) -> None:
        certificates_deleted_total.add(1)

    def record_csr_generated(self) -> None:
        csr_generated_total.add(1)

    def record_ticket_served(self, source: str, service: str) -> None:
        """Labels: source=memory|disk|authority"""
        ticket_requests_total.add(1, {"source": source, "service": service})

    def record_ticket_error(self, kind: str, service: str) -> None:
        ticket_errors_total.add(1, {"kind": kind, "service": service})

    def record_ticket_acquisition(self, duration_seconds: float, outcome: str) -> None:
        ticket_acquisition_duration.record(duration_seconds, {"outcome": outcome})

    def record_inflight_join(self, service: str) -> None:
        ticket_inflight_joins_total.add(1, {"service": service})

    def record_ticket_evicted(self, tier: str, reason: str, count: int = 1) -> None:
        """Labels: tier=memory|disk, reason=stale|unreadable|key|tenant|global"""
        if count:
            ticket_cache_evictions_total.add(count, {"tier": tier, "reason": reason})

    def record_disk_write_failed(self) -> None:
        ticket_disk_write_failures_total.add(1)


# Singleton instance
credentials_metrics = CredentialsMetrics()
