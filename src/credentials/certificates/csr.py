"""PKCS#10 certificate signing requests for the tax authority.

The authority signs the request and returns a certificate, which is then
uploaded through the certificate-only ingestion path and paired with the key
generated here.
"""

import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from credentials.certificates.crypto import generate_private_key, private_key_to_pem
from credentials.certificates.tax_id import clean_explicit_tax_id

logger = logging.getLogger(__name__)


@dataclass
class GeneratedRequest:
    """Result of CSR generation."""

    csr_pem: str
    private_key_pem: str
    tax_id: str


class CsrGenerator:
    """Generates signing requests for a tenant's tax id.

    Request attributes:
    - Subject: CN=CUIT <tax id>, O=<organization>, C=AR, serialNumber=CUIT <tax id>
    - Key: RSA 2048
    - Signature: SHA-256
    """

    COUNTRY = "AR"

    def generate(self, tax_id: str, organization_name: str) -> GeneratedRequest:
        """Generate a new key pair and a CSR signed with it.

        Raises:
            InvalidTaxIdError: If the tax id is not 11 digits.
        """
        tax_id = clean_explicit_tax_id(tax_id)
        private_key = generate_private_key()

        subject = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, f"CUIT {tax_id}"),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization_name),
                x509.NameAttribute(NameOID.COUNTRY_NAME, self.COUNTRY),
                x509.NameAttribute(NameOID.SERIAL_NUMBER, f"CUIT {tax_id}"),
            ]
        )

        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(subject)
            .sign(private_key, hashes.SHA256())
        )

        logger.info("csr_generated", extra={"tax_id": tax_id})

        return GeneratedRequest(
            csr_pem=csr.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
            private_key_pem=private_key_to_pem(private_key),
            tax_id=tax_id,
        )
