"""Exceptions raised by the certificate store."""


class CertificateStoreError(Exception):
    """Base class for certificate store failures."""

    reason = "error"


class DecodeError(CertificateStoreError):
    """Raised when uploaded material cannot be parsed or decrypted."""

    reason = "decode"

    def __init__(self, message: str, failures: list[str] | None = None):
        self.failures = failures or []
        if self.failures:
            message = f"{message} ({'; '.join(self.failures)})"
        super().__init__(message)


class MissingMaterialError(CertificateStoreError):
    """Raised when a PKCS#12 container lacks the certificate or the private key."""

    reason = "missing_material"


class TaxIdNotFoundError(CertificateStoreError):
    """Raised when no 11-digit tax id can be located in a certificate."""

    reason = "tax_id_not_found"


class InvalidTaxIdError(CertificateStoreError):
    """Raised when a caller-supplied tax id is not 11 digits."""

    reason = "invalid_tax_id"


class KeyMismatchError(CertificateStoreError):
    """Raised when the private key does not belong to the certificate."""

    reason = "key_mismatch"


class StorageError(CertificateStoreError):
    """Raised when identity material cannot be written to or removed from disk."""

    reason = "storage"


class NotFoundError(CertificateStoreError):
    """Raised when a tenant has no (complete) identity material on disk."""

    reason = "not_found"
