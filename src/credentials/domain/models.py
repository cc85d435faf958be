from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from xml.etree import ElementTree as ET

from .states import IngestMethod, TicketState

# (tenant_id, target_service)
TicketKey = tuple[int, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given.

    Raises:
        ValueError: If the value is not an ISO-8601 string.
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO-8601 timestamp, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class TenantCertificate:
    """Identity material for one tenant, as persisted by the certificate store."""

    tenant_id: int
    tax_id: str
    certificate_pem: str
    private_key_pem: str = field(repr=False)
    valid_from: datetime
    valid_to: datetime
    source_format: IngestMethod
    thumbprint: str | None = None
    passphrase: str | None = field(default=None, repr=False)

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.valid_to > (now or utc_now())


@dataclass(frozen=True)
class AccessTicket:
    """Signed access ticket issued by the authority for one target service."""

    tenant_id: int
    target_service: str
    token: str = field(repr=False)
    signature: str = field(repr=False)
    expiration_time: datetime

    @property
    def key(self) -> TicketKey:
        return (self.tenant_id, self.target_service)

    def state(self, now: datetime, safety_margin: timedelta) -> TicketState:
        if self.expiration_time - safety_margin > now:
            return TicketState.FRESH
        return TicketState.STALE

    def is_usable(self, now: datetime, safety_margin: timedelta) -> bool:
        return self.state(now, safety_margin) is TicketState.FRESH

    def to_record(self) -> dict[str, str]:
        """Serialize to the on-disk record format."""
        return {
            "token": self.token,
            "signature": self.signature,
            "expirationTime": self.expiration_time.isoformat(),
        }

    @classmethod
    def from_record(cls, key: TicketKey, record: dict[str, Any]) -> "AccessTicket":
        tenant_id, target_service = key
        return cls(
            tenant_id=tenant_id,
            target_service=target_service,
            token=record["token"],
            signature=record["signature"],
            expiration_time=parse_timestamp(record["expirationTime"]),
        )


@dataclass(frozen=True)
class SigningRequest:
    """Login ticket request (TRA); only exists to be signed and sent."""

    unique_id: int
    generation_time: datetime
    expiration_time: datetime
    target_service: str

    @classmethod
    def create(
        cls,
        target_service: str,
        now: datetime | None = None,
        ttl: timedelta = timedelta(hours=12),
    ) -> "SigningRequest":
        now = now or utc_now()
        return cls(
            unique_id=int(now.timestamp()),
            generation_time=now,
            expiration_time=now + ttl,
            target_service=target_service,
        )

    def to_xml(self) -> bytes:
        """Canonical loginTicketRequest document that gets signed."""
        root = ET.Element("loginTicketRequest", {"version": "1.0"})
        header = ET.SubElement(root, "header")
        ET.SubElement(header, "uniqueId").text = str(self.unique_id)
        ET.SubElement(header, "generationTime").text = self.generation_time.isoformat(
            timespec="seconds"
        )
        ET.SubElement(header, "expirationTime").text = self.expiration_time.isoformat(
            timespec="seconds"
        )
        ET.SubElement(root, "service").text = self.target_service
        return ET.tostring(root, encoding="UTF-8", xml_declaration=True)
