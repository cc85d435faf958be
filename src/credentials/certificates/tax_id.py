"""Tax id (CUIT) validation and extraction from X.509 certificates.

Extraction is an ordered list of strategies; each one inspects a different
part of the certificate and the first 11-digit match wins.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from cryptography import x509
from cryptography.x509.oid import NameOID

from credentials.certificates.errors import InvalidTaxIdError, TaxIdNotFoundError

logger = logging.getLogger(__name__)

TAX_ID_LENGTH = 11
TAX_ID_PATTERN = re.compile(r"\d{11}")
CHECK_DIGIT_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)

# Subject attributes that are known to carry the tax id, in scan order
KNOWN_TAX_ID_ATTRIBUTES: tuple[x509.ObjectIdentifier, ...] = (
    NameOID.SERIAL_NUMBER,
    NameOID.COMMON_NAME,
    NameOID.USER_ID,
    NameOID.ORGANIZATION_NAME,
)


def normalize_tax_id(value: str) -> str:
    """Strip dashes and whitespace (``20-12345678-6`` -> ``20123456786``)."""
    return re.sub(r"[-\s]", "", value)


def compute_check_digit(first_ten: str) -> int:
    """Modulus-11 check digit for the first ten digits of a tax id."""
    total = sum(int(digit) * weight for digit, weight in zip(first_ten, CHECK_DIGIT_WEIGHTS))
    result = 11 - (total % 11)
    if result == 11:
        return 0
    if result == 10:
        return 9
    return result


def is_valid_tax_id(value: str) -> bool:
    """True iff the value is 11 digits and its check digit matches."""
    digits = normalize_tax_id(value)
    if len(digits) != TAX_ID_LENGTH or not digits.isdigit():
        return False
    return compute_check_digit(digits[:10]) == int(digits[10])


def clean_explicit_tax_id(value: str) -> str:
    """Keep only digits of a caller-supplied tax id.

    Raises:
        InvalidTaxIdError: If the result is not exactly 11 digits.
    """
    digits = re.sub(r"[^0-9]", "", value)
    if len(digits) != TAX_ID_LENGTH:
        raise InvalidTaxIdError("The supplied tax id must have 11 digits")
    return digits


def _search(value: str | bytes | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    match = TAX_ID_PATTERN.search(value)
    return match.group(0) if match else None


def _first_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str | bytes | None:
    attributes = name.get_attributes_for_oid(oid)
    return attributes[0].value if attributes else None


def from_subject_serial_number(certificate: x509.Certificate) -> str | None:
    return _search(_first_attribute(certificate.subject, NameOID.SERIAL_NUMBER))


def from_subject_common_name(certificate: x509.Certificate) -> str | None:
    return _search(_first_attribute(certificate.subject, NameOID.COMMON_NAME))


def from_known_subject_attributes(certificate: x509.Certificate) -> str | None:
    for oid in KNOWN_TAX_ID_ATTRIBUTES:
        for attribute in certificate.subject.get_attributes_for_oid(oid):
            found = _search(attribute.value)
            if found:
                return found
    return None


def from_rendered_subject(certificate: x509.Certificate) -> str | None:
    return _search(certificate.subject.rfc4514_string())


def from_rendered_issuer(certificate: x509.Certificate) -> str | None:
    return _search(certificate.issuer.rfc4514_string())


TaxIdStrategy = Callable[[x509.Certificate], str | None]

TAX_ID_STRATEGIES: tuple[tuple[str, TaxIdStrategy], ...] = (
    ("subject_serial_number", from_subject_serial_number),
    ("subject_common_name", from_subject_common_name),
    ("subject_known_attributes", from_known_subject_attributes),
    ("subject", from_rendered_subject),
    ("issuer", from_rendered_issuer),
)


@dataclass
class TaxIdMatch:
    value: str
    source: str


def extract_tax_id(
    certificate: x509.Certificate,
    strategies: tuple[tuple[str, TaxIdStrategy], ...] = TAX_ID_STRATEGIES,
) -> TaxIdMatch:
    """Run the extraction strategies in order and return the first match.

    Raises:
        TaxIdNotFoundError: If no strategy finds an 11-digit number.
    """
    for source, strategy in strategies:
        found = strategy(certificate)
        if found:
            logger.info("tax_id_extracted", extra={"source": source, "tax_id": found})
            return TaxIdMatch(value=found, source=source)

    logger.error(
        "tax_id_not_found",
        extra={
            "subject": certificate.subject.rfc4514_string(),
            "issuer": certificate.issuer.rfc4514_string(),
        },
    )
    raise TaxIdNotFoundError(
        "Could not extract the tax id from the certificate: "
        "no 11-digit number in its subject or issuer"
    )


def resolve_tax_id(certificate: x509.Certificate, explicit: str | None = None) -> TaxIdMatch:
    """Prefer a caller-supplied tax id over the extraction strategies."""
    if explicit:
        return TaxIdMatch(value=clean_explicit_tax_id(explicit), source="explicit")
    return extract_tax_id(certificate)
