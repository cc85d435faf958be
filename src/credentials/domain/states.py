from enum import StrEnum


class IngestMethod(StrEnum):
    """How a tenant's identity material was uploaded."""

    PFX = "pfx"
    CRT_KEY = "crt-key"
    CRT = "crt"


class TicketState(StrEnum):
    """Lifecycle of a cached access ticket for one (tenant, service) key."""

    ABSENT = "absent"
    FRESH = "fresh"
    STALE = "stale"  # Inside the safety margin; purged on next observation


class TicketSource(StrEnum):
    """Where a returned ticket came from."""

    MEMORY = "memory"
    DISK = "disk"
    AUTHORITY = "authority"


class FaultKind(StrEnum):
    """Classification of a SOAP fault returned by the authority."""

    UNTRUSTED = "untrusted"
    EXPIRED = "expired"
    OTHER = "other"


class CacheScope(StrEnum):
    KEY = "key"
    TENANT = "tenant"
    GLOBAL = "global"
