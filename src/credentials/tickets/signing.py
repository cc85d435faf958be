"""CMS (PKCS#7 SignedData) signing of login ticket requests."""

import base64
import logging

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from credentials.tickets.errors import SigningError

logger = logging.getLogger(__name__)


def sign_login_request(
    payload: bytes,
    certificate_pem: str,
    private_key_pem: str,
    detached: bool = False,
) -> bytes:
    """Sign ``payload`` and return the DER-encoded SignedData.

    SHA-256 digest; the signing certificate is embedded and the signed
    attributes are content-type, message-digest and signing-time. The payload
    is embedded unless ``detached`` is set, because the authority reads the
    request from inside the envelope.

    Raises:
        SigningError: If the stored material cannot be loaded or used to sign.
    """
    try:
        certificate = x509.load_pem_x509_certificate(certificate_pem.encode("utf-8"))
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode("utf-8"), password=None
        )
    except (TypeError, ValueError) as e:
        raise SigningError(f"Stored certificate or private key is unreadable: {e}") from e

    options = [pkcs7.PKCS7Options.Binary, pkcs7.PKCS7Options.NoCapabilities]
    if detached:
        options.append(pkcs7.PKCS7Options.DetachedSignature)

    try:
        return (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(payload)
            .add_signer(certificate, private_key, hashes.SHA256())  # type: ignore[arg-type]
            .sign(serialization.Encoding.DER, options)
        )
    except (TypeError, ValueError) as e:
        raise SigningError(f"Failed to sign the login request: {e}") from e


def encode_cms(der: bytes) -> str:
    return base64.b64encode(der).decode("ascii")
