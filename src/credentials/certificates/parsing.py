"""Decoding of uploaded identity material into cryptography objects.

Certificates are tried against an ordered list of parsers (PEM, then DER);
the first parser that succeeds wins and every failure is reported if none do.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.hazmat.primitives.serialization import pkcs12

from credentials.certificates.errors import DecodeError, MissingMaterialError

logger = logging.getLogger(__name__)

CertificateParser = Callable[[bytes], x509.Certificate]

CERTIFICATE_PARSERS: tuple[tuple[str, CertificateParser], ...] = (
    ("pem", x509.load_pem_x509_certificate),
    ("der", x509.load_der_x509_certificate),
)

# Iterations for the PKCS#12 key derivation; matches common OpenSSL defaults
PKCS12_KDF_ROUNDS = 2048


@dataclass
class ParsedCertificate:
    certificate: x509.Certificate
    encoding: str


@dataclass
class Pkcs12Contents:
    certificate: x509.Certificate
    private_key: PrivateKeyTypes


def parse_certificate(
    data: bytes,
    parsers: tuple[tuple[str, CertificateParser], ...] = CERTIFICATE_PARSERS,
) -> ParsedCertificate:
    """Parse a certificate by trying each parser in order.

    Raises:
        DecodeError: If no parser accepts the data; lists each failure.
    """
    failures: list[str] = []
    for encoding, parser in parsers:
        try:
            certificate = parser(data)
        except ValueError as e:
            failures.append(f"{encoding}: {e}")
            continue
        logger.debug("certificate_parsed", extra={"encoding": encoding})
        return ParsedCertificate(certificate=certificate, encoding=encoding)

    raise DecodeError("Could not read the certificate; expected a PEM or DER file", failures)


def parse_private_key(data: bytes, passphrase: str | None = None) -> PrivateKeyTypes:
    """Load a PEM private key, decrypting it with the passphrase when needed.

    Raises:
        DecodeError: If the data is not a readable PEM private key.
    """
    try:
        return serialization.load_pem_private_key(data, password=None)
    except TypeError:
        # Encrypted key; retry with the passphrase below
        pass
    except ValueError as e:
        raise DecodeError(f"Could not read the private key; expected PEM format: {e}") from e

    if not passphrase:
        raise DecodeError("The private key is encrypted and no passphrase was given")

    try:
        return serialization.load_pem_private_key(data, password=passphrase.encode("utf-8"))
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Could not decrypt the private key: {e}") from e


def load_pkcs12(archive: bytes, passphrase: str | None) -> Pkcs12Contents:
    """Decrypt a PKCS#12 container and extract its leaf certificate and key.

    Raises:
        DecodeError: On a corrupt container or wrong passphrase.
        MissingMaterialError: If the certificate or the key bag is absent.
    """
    password = passphrase.encode("utf-8") if passphrase else None
    try:
        private_key, certificate, _additional = pkcs12.load_key_and_certificates(
            archive, password
        )
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Could not open the PKCS#12 archive: {e}") from e

    # A key-less archive may surface its certificate among the additional ones
    if private_key is None:
        raise MissingMaterialError("The PKCS#12 archive does not contain a private key")
    if certificate is None:
        raise MissingMaterialError("The PKCS#12 archive does not contain a certificate")

    return Pkcs12Contents(certificate=certificate, private_key=private_key)


def export_pkcs12(
    certificate: x509.Certificate,
    private_key: PrivateKeyTypes,
    passphrase: str | None,
    name: bytes | None = None,
) -> bytes:
    """Build a PKCS#12 bundle using legacy 3DES/SHA-1 PBE for interoperability."""
    if passphrase:
        encryption = (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(PKCS12_KDF_ROUNDS)
            .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
            .hmac_hash(hashes.SHA1())
            .build(passphrase.encode("utf-8"))
        )
    else:
        encryption = serialization.NoEncryption()

    return pkcs12.serialize_key_and_certificates(
        name,
        private_key,  # type: ignore[arg-type]
        certificate,
        None,
        encryption,
    )
