"""Access tickets issued by the tax authority's authentication service.

This module provides:
- CMS signing of login ticket requests
- The SOAP exchange with the authentication service
- Two-tier (memory and disk) ticket caching with per-key single-flight
"""

from credentials.tickets.cache import DiskTicketCache
from credentials.tickets.errors import (
    AlreadyIssuedError,
    AuthorityFaultError,
    MalformedResponseError,
    MissingCertificateError,
    SigningError,
    TicketError,
    TicketResult,
    TransportError,
)
from credentials.tickets.manager import TicketCacheManager
from credentials.tickets.transport import WsaaTransport

__all__ = [
    "AlreadyIssuedError",
    "AuthorityFaultError",
    "DiskTicketCache",
    "MalformedResponseError",
    "MissingCertificateError",
    "SigningError",
    "TicketCacheManager",
    "TicketError",
    "TicketResult",
    "TransportError",
    "WsaaTransport",
]
