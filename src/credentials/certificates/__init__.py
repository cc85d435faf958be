"""Tenant certificate management for the tax authority.

This module provides:
- Per-tenant storage of certificates and private keys (three upload formats)
- Tax id (CUIT) validation and extraction from certificates
- Certificate signing request generation
"""

from credentials.certificates.errors import (
    CertificateStoreError,
    DecodeError,
    InvalidTaxIdError,
    KeyMismatchError,
    MissingMaterialError,
    NotFoundError,
    StorageError,
    TaxIdNotFoundError,
)
from credentials.certificates.store import CertificateStore

__all__ = [
    "CertificateStore",
    "CertificateStoreError",
    "DecodeError",
    "InvalidTaxIdError",
    "KeyMismatchError",
    "MissingMaterialError",
    "NotFoundError",
    "StorageError",
    "TaxIdNotFoundError",
]
