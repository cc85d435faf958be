"""Cryptographic utilities for tenant identity material.

Provides passphrase encryption at rest, thumbprints, key generation and the
key/certificate pairing self-test.
"""

import hashlib
import logging
import os

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from credentials.certificates.errors import KeyMismatchError

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048


class CryptoError(Exception):
    """Raised when a cryptographic operation fails."""

    pass


def load_encryption_key(key_str: str | None) -> bytes | None:
    """Validate a configured Fernet key.

    Returns:
        The key as bytes, or None when no key is configured.

    Raises:
        CryptoError: If the key is set but not a valid Fernet key.
    """
    if not key_str:
        return None

    try:
        key_bytes = key_str.encode("utf-8")
        Fernet(key_bytes)  # Validates the key format
        return key_bytes
    except ValueError as e:
        raise CryptoError(f"Invalid CERT_ENCRYPTION_KEY: {e}") from e


def encrypt_secret(secret: str, key: bytes) -> str:
    """Encrypt a short secret (certificate passphrase) with Fernet."""
    try:
        return Fernet(key).encrypt(secret.encode("utf-8")).decode("utf-8")
    except Exception as e:
        raise CryptoError(f"Failed to encrypt secret: {e}") from e


def decrypt_secret(token: str, key: bytes) -> str:
    """Decrypt a secret produced by :func:`encrypt_secret`."""
    try:
        return Fernet(key).decrypt(token.encode("utf-8")).decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise CryptoError(f"Failed to decrypt secret: {e}") from e


def generate_fernet_key() -> str:
    """Generate a new Fernet key suitable for CERT_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode("utf-8")


def compute_thumbprint(certificate: x509.Certificate) -> str:
    """Lowercase hexadecimal SHA-256 of the DER-encoded certificate."""
    der_bytes = certificate.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(der_bytes).hexdigest().lower()


def generate_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def certificate_to_pem(certificate: x509.Certificate) -> str:
    return certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def private_key_to_pem(private_key: PrivateKeyTypes) -> str:
    """Serialize a private key to unencrypted PKCS#8 PEM."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def verify_key_pair(certificate: x509.Certificate, private_key: PrivateKeyTypes) -> None:
    """Sign a random nonce with the key and verify it with the certificate.

    Raises:
        KeyMismatchError: If the key did not produce a signature the
            certificate's public key accepts, or the key type is unsupported.
    """
    nonce = os.urandom(32)
    public_key = certificate.public_key()

    try:
        if isinstance(private_key, rsa.RSAPrivateKey) and isinstance(
            public_key, rsa.RSAPublicKey
        ):
            signature = private_key.sign(nonce, padding.PKCS1v15(), hashes.SHA256())
            public_key.verify(signature, nonce, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(private_key, ec.EllipticCurvePrivateKey) and isinstance(
            public_key, ec.EllipticCurvePublicKey
        ):
            signature = private_key.sign(nonce, ec.ECDSA(hashes.SHA256()))
            public_key.verify(signature, nonce, ec.ECDSA(hashes.SHA256()))
        else:
            raise KeyMismatchError(
                "Private key type does not match the certificate's public key type"
            )
    except InvalidSignature as e:
        raise KeyMismatchError("Private key does not belong to the certificate") from e
