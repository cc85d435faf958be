"""Per-tenant storage of tax authority certificates and private keys.

Each tenant owns a directory under the configured base path:

- ``cert.pem`` / ``key.pem``: certificate and unencrypted PKCS#8 key
- ``cert.pfx``: PKCS#12 bundle regenerated on certificate uploads
- ``request.csr`` / ``request.key``: pending signing request and its key
- ``info.json``: tax id, validity window and upload metadata

Writes for one tenant are serialized and every file is replaced atomically.
"""

import logging
import shutil
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from opentelemetry import trace

from credentials.cache import MemoryCache
from credentials.certificates.crypto import (
    CryptoError,
    certificate_to_pem,
    compute_thumbprint,
    decrypt_secret,
    encrypt_secret,
    generate_private_key,
    private_key_to_pem,
    verify_key_pair,
)
from credentials.certificates.csr import CsrGenerator
from credentials.certificates.errors import (
    CertificateStoreError,
    KeyMismatchError,
    NotFoundError,
    StorageError,
)
from credentials.certificates.parsing import (
    export_pkcs12,
    load_pkcs12,
    parse_certificate,
    parse_private_key,
)
from credentials.certificates.tax_id import (
    TaxIdMatch,
    clean_explicit_tax_id,
    is_valid_tax_id,
    resolve_tax_id,
)
from credentials.domain.models import TenantCertificate, parse_timestamp, utc_now
from credentials.domain.states import IngestMethod
from credentials.metrics import credentials_metrics
from credentials.storage import SECRET_FILE_MODE, atomic_write, read_json, write_json

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CertificateStore:
    """Owns tenant identity material on disk plus an in-process read cache."""

    CERT_FILE = "cert.pem"
    KEY_FILE = "key.pem"
    PFX_FILE = "cert.pfx"
    INFO_FILE = "info.json"
    CSR_FILE = "request.csr"
    PENDING_KEY_FILE = "request.key"

    REQUIRED_FILES = (CERT_FILE, KEY_FILE, INFO_FILE)

    def __init__(
        self,
        base_path: Path,
        cache: MemoryCache[int, TenantCertificate],
        encryption_key: bytes | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.base_path = Path(base_path)
        self._cache = cache
        self._encryption_key = encryption_key
        self._clock = clock
        self._csr_generator = CsrGenerator()
        self._tenant_locks: dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def tenant_dir(self, tenant_id: int) -> Path:
        return self.base_path / str(tenant_id)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_pkcs12(
        self,
        tenant_id: int,
        tax_id: str,
        archive: bytes,
        passphrase: str | None,
    ) -> TenantCertificate:
        """Store the certificate and key contained in a PKCS#12 (.pfx/.p12) archive.

        Raises:
            DecodeError: Corrupt archive or wrong passphrase.
            MissingMaterialError: Certificate or key missing from the archive.
            InvalidTaxIdError: The tax id is not 11 digits.
            KeyMismatchError: The key in the archive does not match its certificate.
        """
        with tracer.start_as_current_span("CertificateStore.ingest_pkcs12") as span:
            span.set_attribute("tenant_id", tenant_id)

            with self._track_ingest(tenant_id, IngestMethod.PFX):
                match = TaxIdMatch(value=clean_explicit_tax_id(tax_id), source="explicit")
                contents = load_pkcs12(archive, passphrase)
                verify_key_pair(contents.certificate, contents.private_key)

                return self._persist(
                    tenant_id,
                    match,
                    contents.certificate,
                    contents.private_key,
                    IngestMethod.PFX,
                    passphrase,
                )

    def ingest_certificate_and_key(
        self,
        tenant_id: int,
        certificate: bytes,
        key: bytes,
        passphrase: str | None,
    ) -> TenantCertificate:
        """Store a certificate (PEM or DER) together with its PEM private key.

        The tax id is extracted from the certificate and a PKCS#12 bundle is
        regenerated for interoperability.

        Raises:
            DecodeError: Unreadable certificate or key.
            TaxIdNotFoundError: No tax id found in the certificate.
            KeyMismatchError: The key does not belong to the certificate.
        """
        with tracer.start_as_current_span("CertificateStore.ingest_certificate_and_key") as span:
            span.set_attribute("tenant_id", tenant_id)

            with self._track_ingest(tenant_id, IngestMethod.CRT_KEY):
                parsed = parse_certificate(certificate)
                span.set_attribute("certificate_encoding", parsed.encoding)
                private_key = parse_private_key(key, passphrase)
                match = resolve_tax_id(parsed.certificate)
                verify_key_pair(parsed.certificate, private_key)

                return self._persist(
                    tenant_id,
                    match,
                    parsed.certificate,
                    private_key,
                    IngestMethod.CRT_KEY,
                    passphrase,
                    write_pfx=True,
                )

    def ingest_certificate(
        self,
        tenant_id: int,
        certificate: bytes,
        passphrase: str | None,
        tax_id: str | None = None,
    ) -> TenantCertificate:
        """Store a certificate issued for a key this store already holds.

        The key comes from a pending signing request or the current key, and
        must match the certificate. When the tenant has no key at all a new
        one is generated; such a pair was never issued together and the
        authority will reject it, so the metadata flags it as generated.

        Raises:
            DecodeError: Unreadable certificate.
            InvalidTaxIdError: The explicit tax id is not 11 digits.
            TaxIdNotFoundError: No explicit tax id and none found in the certificate.
            KeyMismatchError: No stored key belongs to the certificate.
        """
        with tracer.start_as_current_span("CertificateStore.ingest_certificate") as span:
            span.set_attribute("tenant_id", tenant_id)

            with self._track_ingest(tenant_id, IngestMethod.CRT), self._tenant_lock(tenant_id):
                parsed = parse_certificate(certificate)
                span.set_attribute("certificate_encoding", parsed.encoding)
                match = resolve_tax_id(parsed.certificate, explicit=tax_id)
                private_key, key_generated = self._pair_stored_key(tenant_id, parsed.certificate)
                span.set_attribute("key_generated", key_generated)

                stored = self._persist(
                    tenant_id,
                    match,
                    parsed.certificate,
                    private_key,
                    IngestMethod.CRT,
                    passphrase,
                    write_pfx=not key_generated,
                    key_generated=key_generated,
                )
                self._remove_file(tenant_id, self.PENDING_KEY_FILE)
                return stored

    def generate_csr(self, tenant_id: int, tax_id: str, organization_name: str) -> str:
        """Generate a key pair and signing request for the tenant; return the CSR PEM.

        The key is kept as a pending key until the signed certificate is
        uploaded through :meth:`ingest_certificate`.
        """
        with tracer.start_as_current_span("CertificateStore.generate_csr") as span:
            span.set_attribute("tenant_id", tenant_id)

            generated = self._csr_generator.generate(tax_id, organization_name)

            with self._tenant_lock(tenant_id):
                tenant_dir = self.tenant_dir(tenant_id)
                try:
                    tenant_dir.mkdir(parents=True, exist_ok=True)
                    atomic_write(
                        tenant_dir / self.PENDING_KEY_FILE,
                        generated.private_key_pem.encode("utf-8"),
                        mode=SECRET_FILE_MODE,
                    )
                    atomic_write(tenant_dir / self.CSR_FILE, generated.csr_pem.encode("utf-8"))
                except OSError as e:
                    raise StorageError(f"Failed to store the signing request: {e}") from e

            credentials_metrics.record_csr_generated()
            logger.info(
                "csr_stored",
                extra={"tenant_id": tenant_id, "tax_id": generated.tax_id},
            )
            return generated.csr_pem

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, tenant_id: int) -> TenantCertificate:
        """Return the tenant's identity material, from cache while it is valid.

        Raises:
            NotFoundError: A required file is missing or the metadata is unreadable.
        """
        with tracer.start_as_current_span("CertificateStore.load") as span:
            span.set_attribute("tenant_id", tenant_id)

            cached = self._cache.get(tenant_id)
            if cached is not None:
                if cached.is_valid(self._clock()):
                    span.set_attribute("source", "cache")
                    credentials_metrics.record_certificate_lookup("cache")
                    return cached
                self._cache.pop(tenant_id)
                logger.info(
                    "certificate_cache_entry_expired",
                    extra={"tenant_id": tenant_id, "valid_to": cached.valid_to.isoformat()},
                )

            try:
                with self._tenant_lock(tenant_id):
                    stored = self._read(tenant_id)
                    self._cache.set(tenant_id, stored)
            except NotFoundError:
                span.set_attribute("source", "none")
                credentials_metrics.record_certificate_lookup("not_found")
                raise

            span.set_attribute("source", "disk")
            credentials_metrics.record_certificate_lookup("disk")
            return stored

    def lookup(self, tenant_id: int) -> TenantCertificate | None:
        """Like :meth:`load`, but returns None when no usable material exists."""
        try:
            return self.load(tenant_id)
        except CertificateStoreError as e:
            logger.warning(
                "certificate_not_available",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
            return None

    def is_currently_valid(self, tenant_id: int) -> bool:
        stored = self.lookup(tenant_id)
        return stored is not None and stored.is_valid(self._clock())

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def delete(self, tenant_id: int) -> bool:
        """Purge the tenant's directory. Returns False when nothing was stored."""
        with tracer.start_as_current_span("CertificateStore.delete") as span:
            span.set_attribute("tenant_id", tenant_id)

            with self._tenant_lock(tenant_id):
                self._cache.pop(tenant_id)
                tenant_dir = self.tenant_dir(tenant_id)
                if not tenant_dir.exists():
                    logger.warning(
                        "certificate_delete_nothing_stored", extra={"tenant_id": tenant_id}
                    )
                    return False
                try:
                    shutil.rmtree(tenant_dir)
                except OSError as e:
                    raise StorageError(f"Failed to delete certificate files: {e}") from e

            credentials_metrics.record_certificate_deleted()
            logger.info("certificate_deleted", extra={"tenant_id": tenant_id})
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _tenant_lock(self, tenant_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock = self._tenant_locks.setdefault(tenant_id, threading.RLock())
        with lock:
            yield

    @contextmanager
    def _track_ingest(self, tenant_id: int, method: IngestMethod) -> Iterator[None]:
        try:
            yield
        except CertificateStoreError as e:
            logger.error(
                "certificate_ingest_failed",
                extra={"tenant_id": tenant_id, "method": method.value, "error": str(e)},
            )
            credentials_metrics.record_certificate_ingest_failed(method.value, e.reason)
            raise

    def _pair_stored_key(
        self, tenant_id: int, certificate: x509.Certificate
    ) -> tuple[PrivateKeyTypes, bool]:
        """Find the stored key that belongs to ``certificate``, or mint a new one."""
        tenant_dir = self.tenant_dir(tenant_id)
        candidates = [
            tenant_dir / name
            for name in (self.PENDING_KEY_FILE, self.KEY_FILE)
            if (tenant_dir / name).is_file()
        ]

        if not candidates:
            logger.warning(
                "private_key_generated_for_certificate",
                extra={
                    "tenant_id": tenant_id,
                    "detail": "no stored key; the certificate was not issued for this key",
                },
            )
            return generate_private_key(), True

        for path in candidates:
            private_key = parse_private_key(path.read_bytes())
            try:
                verify_key_pair(certificate, private_key)
            except KeyMismatchError:
                logger.info(
                    "stored_key_does_not_match",
                    extra={"tenant_id": tenant_id, "key_file": path.name},
                )
                continue
            logger.info("stored_key_paired", extra={"tenant_id": tenant_id, "key_file": path.name})
            return private_key, False

        raise KeyMismatchError(
            "None of the stored private keys belongs to the uploaded certificate; "
            "upload the certificate together with its key instead"
        )

    def _persist(
        self,
        tenant_id: int,
        tax_id: TaxIdMatch,
        certificate: x509.Certificate,
        private_key: PrivateKeyTypes,
        method: IngestMethod,
        passphrase: str | None,
        write_pfx: bool = False,
        key_generated: bool = False,
    ) -> TenantCertificate:
        if not is_valid_tax_id(tax_id.value):
            logger.warning(
                "tax_id_check_digit_mismatch",
                extra={"tenant_id": tenant_id, "tax_id": tax_id.value, "source": tax_id.source},
            )

        certificate_pem = certificate_to_pem(certificate)
        private_key_pem = private_key_to_pem(private_key)
        thumbprint = compute_thumbprint(certificate)
        valid_from = certificate.not_valid_before_utc
        valid_to = certificate.not_valid_after_utc

        info: dict[str, Any] = {
            "tenantId": tenant_id,
            "taxId": tax_id.value,
            "validFrom": valid_from.isoformat(),
            "validTo": valid_to.isoformat(),
            "passphrase": None,
            "passphraseEncrypted": False,
            "createdAt": self._clock().isoformat(),
            "ingestMethod": method.value,
            "thumbprint": thumbprint,
        }
        if passphrase:
            if self._encryption_key:
                info["passphrase"] = encrypt_secret(passphrase, self._encryption_key)
                info["passphraseEncrypted"] = True
            else:
                info["passphrase"] = passphrase
        if key_generated:
            info["keyGenerated"] = True

        with self._tenant_lock(tenant_id):
            tenant_dir = self.tenant_dir(tenant_id)
            try:
                tenant_dir.mkdir(parents=True, exist_ok=True)
                atomic_write(tenant_dir / self.CERT_FILE, certificate_pem.encode("utf-8"))
                atomic_write(
                    tenant_dir / self.KEY_FILE,
                    private_key_pem.encode("utf-8"),
                    mode=SECRET_FILE_MODE,
                )
                if write_pfx:
                    atomic_write(
                        tenant_dir / self.PFX_FILE,
                        export_pkcs12(certificate, private_key, passphrase),
                        mode=SECRET_FILE_MODE,
                    )
                # Metadata last: a reader never sees new metadata with old material
                write_json(tenant_dir / self.INFO_FILE, info, mode=SECRET_FILE_MODE)
            except OSError as e:
                raise StorageError(f"Failed to write certificate files: {e}") from e

            self._cache.pop(tenant_id)

        credentials_metrics.record_certificate_ingested(method.value)
        logger.info(
            "certificate_ingested",
            extra={
                "tenant_id": tenant_id,
                "tax_id": tax_id.value,
                "tax_id_source": tax_id.source,
                "method": method.value,
                "thumbprint": thumbprint,
                "valid_from": valid_from.isoformat(),
                "valid_to": valid_to.isoformat(),
            },
        )

        return TenantCertificate(
            tenant_id=tenant_id,
            tax_id=tax_id.value,
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
            valid_from=valid_from,
            valid_to=valid_to,
            source_format=method,
            thumbprint=thumbprint,
            passphrase=passphrase or None,
        )

    def _read(self, tenant_id: int) -> TenantCertificate:
        tenant_dir = self.tenant_dir(tenant_id)
        missing = [name for name in self.REQUIRED_FILES if not (tenant_dir / name).is_file()]
        if missing:
            raise NotFoundError(
                f"No certificate configured for tenant {tenant_id} (missing {', '.join(missing)})"
            )

        try:
            info = read_json(tenant_dir / self.INFO_FILE)
            certificate_pem = (tenant_dir / self.CERT_FILE).read_text(encoding="utf-8")
            private_key_pem = (tenant_dir / self.KEY_FILE).read_text(encoding="utf-8")
            stored = TenantCertificate(
                tenant_id=tenant_id,
                tax_id=info["taxId"],
                certificate_pem=certificate_pem,
                private_key_pem=private_key_pem,
                valid_from=parse_timestamp(info["validFrom"]),
                valid_to=parse_timestamp(info["validTo"]),
                source_format=IngestMethod(info.get("ingestMethod", IngestMethod.PFX)),
                thumbprint=info.get("thumbprint"),
                passphrase=self._read_passphrase(tenant_id, info),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise NotFoundError(
                f"Certificate metadata for tenant {tenant_id} is unreadable: {e}"
            ) from e

        return stored

    def _read_passphrase(self, tenant_id: int, info: dict[str, Any]) -> str | None:
        stored = info.get("passphrase")
        if not stored:
            return None
        if not info.get("passphraseEncrypted"):
            return stored
        if not self._encryption_key:
            logger.warning("passphrase_encrypted_without_key", extra={"tenant_id": tenant_id})
            return None
        try:
            return decrypt_secret(stored, self._encryption_key)
        except CryptoError as e:
            logger.warning(
                "passphrase_decrypt_failed",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
            return None

    def _remove_file(self, tenant_id: int, name: str) -> None:
        try:
            (self.tenant_dir(tenant_id) / name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "certificate_file_cleanup_failed",
                extra={"tenant_id": tenant_id, "file": name, "error": str(e)},
            )
