"""SOAP messages exchanged with the authentication service (WSAA).

Outbound: a ``loginCms`` envelope carrying the base64 CMS blob.
Inbound: either a ``loginCmsReturn`` holding a nested ``loginTicketResponse``
document, or a SOAP fault.
"""

import logging
from xml.etree import ElementTree as ET

from credentials.domain.models import AccessTicket, parse_timestamp
from credentials.domain.states import FaultKind
from credentials.tickets.errors import (
    AlreadyIssuedError,
    AuthorityFaultError,
    MalformedResponseError,
    TransportError,
)

logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSAA_NS = "http://wsaa.view.sua.dvadac.desein.afip.gov"

ET.register_namespace("soapenv", SOAP_ENV_NS)
ET.register_namespace("wsaa", WSAA_NS)

ALREADY_ISSUED_MARKERS = ("alreadyAuthenticated", "ya posee un TA valido")
UNTRUSTED_MARKERS = ("cms.cert.untrusted", "Certificado no emitido", "no confiable")
EXPIRED_MARKERS = ("cms.cert.expired", "expired", "expirado")

FAULT_MESSAGES = {
    FaultKind.UNTRUSTED: (
        "The tax authority does not trust this certificate. It was not issued by the "
        "authority, is not signed correctly, or belongs to the other operating environment "
        "(a homologation certificate used against production or vice versa). Check that the "
        "configured environment matches the certificate."
    ),
    FaultKind.EXPIRED: (
        "The certificate has expired. Generate a new signing request and request a new "
        "certificate from the tax authority."
    ),
}

ALREADY_ISSUED_MESSAGE = (
    "The tax authority already holds a valid access ticket for this certificate and "
    "service. That ticket was issued to another caller and cannot be retrieved; it expires "
    "on its own within 12 hours of issue. Try again later or clear it by waiting out its "
    "expiration."
)

# Characters of the raw response kept in logs and error messages
EXCERPT_LENGTH = 500


def build_login_envelope(cms_b64: str) -> bytes:
    """Wrap the base64 CMS in the ``loginCms`` SOAP request."""
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    login = ET.SubElement(body, f"{{{WSAA_NS}}}loginCms")
    ET.SubElement(login, f"{{{WSAA_NS}}}in0").text = cms_b64
    return ET.tostring(envelope, encoding="UTF-8", xml_declaration=True)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].split(":")[-1]


def _find(element: ET.Element, name: str) -> ET.Element | None:
    for candidate in element.iter():
        if isinstance(candidate.tag, str) and _local_name(candidate.tag) == name:
            return candidate
    return None


def _text(element: ET.Element, name: str) -> str:
    found = _find(element, name)
    if found is None:
        return ""
    return "".join(found.itertext()).strip()


def _excerpt(content: bytes) -> str:
    return content[:EXCERPT_LENGTH].decode("utf-8", errors="replace")


def classify_fault(fault_code: str, fault_string: str) -> FaultKind:
    haystack = f"{fault_code} {fault_string}"
    if any(marker in haystack for marker in UNTRUSTED_MARKERS):
        return FaultKind.UNTRUSTED
    lowered = haystack.lower()
    if any(marker in lowered for marker in EXPIRED_MARKERS):
        return FaultKind.EXPIRED
    return FaultKind.OTHER


def fault_error(fault_code: str, fault_string: str) -> AuthorityFaultError:
    kind = classify_fault(fault_code, fault_string)
    message = FAULT_MESSAGES.get(kind, f"The tax authority rejected the request: {fault_string}")
    return AuthorityFaultError(kind, message, fault_code=fault_code, fault_string=fault_string)


def interpret_login_response(
    status_code: int,
    content: bytes,
    tenant_id: int,
    target_service: str,
) -> AccessTicket:
    """Turn a raw WSAA response into an access ticket.

    Raises:
        AlreadyIssuedError: The authority already issued a ticket elsewhere.
        AuthorityFaultError: The response is a SOAP fault.
        TransportError: Non-success status without a readable fault.
        MalformedResponseError: Success status but no usable ticket.
    """
    text = content.decode("utf-8", errors="replace")
    if any(marker in text for marker in ALREADY_ISSUED_MARKERS):
        logger.warning(
            "ticket_already_issued_by_authority",
            extra={"tenant_id": tenant_id, "service": target_service, "status": status_code},
        )
        raise AlreadyIssuedError(ALREADY_ISSUED_MESSAGE)

    success = 200 <= status_code < 300

    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        logger.error(
            "wsaa_response_unparseable",
            extra={"status": status_code, "response": _excerpt(content)},
        )
        if not success:
            raise TransportError(
                f"The authentication service answered HTTP {status_code}", status_code
            ) from e
        raise MalformedResponseError(f"The authentication service response is not XML: {e}") from e

    fault = _find(root, "Fault")
    if fault is not None:
        fault_code = _text(fault, "faultcode")
        fault_string = _text(fault, "faultstring") or "Unknown error"
        logger.error(
            "wsaa_fault",
            extra={
                "tenant_id": tenant_id,
                "service": target_service,
                "fault_code": fault_code,
                "fault_string": fault_string,
                "detail": _text(fault, "detail"),
            },
        )
        raise fault_error(fault_code, fault_string)

    if not success:
        logger.error(
            "wsaa_http_error",
            extra={"status": status_code, "response": _excerpt(content)},
        )
        raise TransportError(
            f"The authentication service answered HTTP {status_code}", status_code
        )

    login_return = _find(root, "loginCmsReturn")
    if login_return is None or not (login_return.text or "").strip():
        raise MalformedResponseError("The response does not contain loginCmsReturn")

    return parse_ticket_document(login_return.text.strip(), tenant_id, target_service)


def parse_ticket_document(document: str, tenant_id: int, target_service: str) -> AccessTicket:
    """Parse the nested ``loginTicketResponse`` document.

    Raises:
        MalformedResponseError: Unparseable document or missing token, sign
            or expiration time.
    """
    try:
        ticket_root = ET.fromstring(document.encode("utf-8"))
    except ET.ParseError as e:
        raise MalformedResponseError(f"The login ticket document is not XML: {e}") from e

    token = _text(ticket_root, "token")
    signature = _text(ticket_root, "sign")
    expiration = _text(ticket_root, "expirationTime")

    missing = [
        name
        for name, value in (("token", token), ("sign", signature), ("expirationTime", expiration))
        if not value
    ]
    if missing:
        raise MalformedResponseError(
            f"The login ticket is missing {', '.join(missing)}"
        )

    try:
        expiration_time = parse_timestamp(expiration)
    except ValueError as e:
        raise MalformedResponseError(f"Invalid ticket expiration time {expiration!r}") from e

    return AccessTicket(
        tenant_id=tenant_id,
        target_service=target_service,
        token=token,
        signature=signature,
        expiration_time=expiration_time,
    )
