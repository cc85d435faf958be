"""Failures of access ticket acquisition.

Every failure is a :class:`TicketError`; the ticket manager hands them back
inside a :class:`TicketResult` instead of letting them escape.
"""

from dataclasses import dataclass

from credentials.domain.models import AccessTicket
from credentials.domain.states import FaultKind, TicketSource


class TicketError(Exception):
    """Base class for access ticket failures."""

    kind = "error"


class MissingCertificateError(TicketError):
    """Raised when the tenant has no usable certificate; no request is sent."""

    kind = "missing_certificate"

    def __init__(self, tenant_id: int):
        self.tenant_id = tenant_id
        super().__init__(
            f"No certificate is configured for tenant {tenant_id}; "
            "upload the tax authority certificate first"
        )


class SigningError(TicketError):
    """Raised when the login request cannot be signed with the stored material."""

    kind = "signing"


class TransportError(TicketError):
    """Raised on network failures, timeouts and non-success HTTP statuses."""

    kind = "transport"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class AuthorityFaultError(TicketError):
    """Raised when the authority answers with a SOAP fault."""

    kind = "authority_fault"

    def __init__(self, fault_kind: FaultKind, message: str, fault_code: str, fault_string: str):
        self.fault_kind = fault_kind
        self.fault_code = fault_code
        self.fault_string = fault_string
        super().__init__(message)


class AlreadyIssuedError(TicketError):
    """Raised when the authority already holds a valid ticket for this certificate.

    That ticket was issued to another caller and cannot be retrieved; it
    expires on its own within 12 hours of issue.
    """

    kind = "already_issued"


class MalformedResponseError(TicketError):
    """Raised when a successful response lacks token, sign or expiration time."""

    kind = "malformed_response"


@dataclass(frozen=True)
class TicketResult:
    """Outcome of a ticket request: either a ticket or the reason there is none."""

    ticket: AccessTicket | None = None
    error: TicketError | None = None
    source: TicketSource | None = None

    @property
    def ok(self) -> bool:
        return self.ticket is not None

    def unwrap(self) -> AccessTicket:
        """Return the ticket or raise the recorded error."""
        if self.ticket is None:
            raise self.error or TicketError("No ticket available")
        return self.ticket
