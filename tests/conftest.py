"""Shared builders for certificates, PKCS#12 archives and WSAA responses."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from xml.sax.saxutils import escape

import httpx
import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from credentials.cache import MemoryCache
from credentials.certificates import CertificateStore
from credentials.tickets import DiskTicketCache, TicketCacheManager, WsaaTransport

WSAA_TEST_URL = "https://wsaahomo.example.test/ws/services/LoginCms"


def make_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_name(**attributes: str) -> x509.Name:
    oids = {
        "common_name": NameOID.COMMON_NAME,
        "serial_number": NameOID.SERIAL_NUMBER,
        "organization": NameOID.ORGANIZATION_NAME,
        "country": NameOID.COUNTRY_NAME,
        "user_id": NameOID.USER_ID,
    }
    return x509.Name([x509.NameAttribute(oids[name], value) for name, value in attributes.items()])


def make_certificate(
    key: rsa.RSAPrivateKey,
    subject: x509.Name | None = None,
    issuer: x509.Name | None = None,
    days: int = 365,
    not_before: datetime | None = None,
) -> x509.Certificate:
    """Self-signed (or issuer-named) certificate for ``key``."""
    subject = subject or make_name(
        common_name="test-company", serial_number="CUIT 30716539685", country="AR"
    )
    not_before = not_before or datetime.now(timezone.utc) - timedelta(days=1)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer or subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=days))
        .sign(key, hashes.SHA256())
    )


def certificate_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def key_pem(key: rsa.RSAPrivateKey, passphrase: str | None = None) -> bytes:
    encryption = (
        serialization.BestAvailableEncryption(passphrase.encode())
        if passphrase
        else serialization.NoEncryption()
    )
    return key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, encryption
    )


def make_pkcs12(
    certificate: x509.Certificate | None,
    key: rsa.RSAPrivateKey | None,
    passphrase: str = "secret",
) -> bytes:
    return pkcs12.serialize_key_and_certificates(
        b"test",
        key,
        certificate,
        None,
        serialization.BestAvailableEncryption(passphrase.encode()),
    )


def login_ticket_xml(
    token: str = "TOKEN-123",
    sign: str = "SIGN-456",
    expiration: datetime | None = None,
) -> str:
    expiration = expiration or datetime.now(timezone.utc) + timedelta(hours=12)
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<loginTicketResponse version="1.0">'
        "<header>"
        "<source>CN=wsaahomo, O=AFIP, C=AR</source>"
        "<destination>SERIALNUMBER=CUIT 30716539685, CN=test-company</destination>"
        "<uniqueId>1234567890</uniqueId>"
        "<generationTime>2026-01-01T10:00:00.000-03:00</generationTime>"
        f"<expirationTime>{expiration.isoformat()}</expirationTime>"
        "</header>"
        "<credentials>"
        f"<token>{token}</token>"
        f"<sign>{sign}</sign>"
        "</credentials>"
        "</loginTicketResponse>"
    )


def login_response(ticket_xml: str | None = None) -> bytes:
    """SOAP envelope returned by a successful loginCms call."""
    inner = escape(ticket_xml if ticket_xml is not None else login_ticket_xml())
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" '
        'xmlns:xsd="http://www.w3.org/2001/XMLSchema">'
        "<soapenv:Body>"
        '<loginCmsResponse xmlns="http://wsaa.view.sua.dvadac.desein.afip.gov">'
        f"<loginCmsReturn>{inner}</loginCmsReturn>"
        "</loginCmsResponse>"
        "</soapenv:Body>"
        "</soapenv:Envelope>"
    ).encode("utf-8")


def fault_response(fault_code: str, fault_string: str, prefix: str = "soapenv") -> bytes:
    """SOAP fault envelope as sent by the authority."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<{prefix}:Envelope xmlns:{prefix}="http://schemas.xmlsoap.org/soap/envelope/">'
        f"<{prefix}:Body>"
        f"<{prefix}:Fault>"
        f"<faultcode>{fault_code}</faultcode>"
        f"<faultstring>{fault_string}</faultstring>"
        "<detail>"
        '<ns1:hostname xmlns:ns1="http://xml.apache.org/axis/">wsaa</ns1:hostname>'
        "</detail>"
        f"</{prefix}:Fault>"
        f"</{prefix}:Body>"
        f"</{prefix}:Envelope>"
    ).encode("utf-8")


class FakeClock:
    """Settable clock injected into the store and manager."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class RecordingWsaa:
    """httpx MockTransport handler that records requests and replays responses."""

    def __init__(self, status_code: int = 200, content: bytes | None = None, delay: float = 0.0):
        self.status_code = status_code
        self.content = content
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        content = self.content if self.content is not None else login_response()
        return httpx.Response(self.status_code, content=content)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> CertificateStore:
    return CertificateStore(tmp_path / "certs", MemoryCache(), clock=clock)


@pytest.fixture
def tenant_key() -> rsa.RSAPrivateKey:
    return make_key()


@pytest.fixture
def tenant_certificate(tenant_key: rsa.RSAPrivateKey) -> x509.Certificate:
    return make_certificate(tenant_key)


@pytest.fixture
def stored_tenant(store, tenant_certificate, tenant_key) -> int:
    """Tenant 7 with a certificate and key already ingested."""
    store.ingest_certificate_and_key(
        7, certificate_pem(tenant_certificate), key_pem(tenant_key), None
    )
    return 7


@pytest.fixture
def wsaa() -> RecordingWsaa:
    return RecordingWsaa()


@pytest.fixture
def disk_cache(tmp_path: Path) -> DiskTicketCache:
    return DiskTicketCache(tmp_path / "cache")


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest_asyncio.fixture
async def manager(store, wsaa, memory_cache, disk_cache, clock):
    async with httpx.AsyncClient(transport=httpx.MockTransport(wsaa)) as http:
        transport = WsaaTransport(WSAA_TEST_URL, http=http)
        yield TicketCacheManager(store, transport, memory_cache, disk_cache, clock=clock)
