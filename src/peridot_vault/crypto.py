"""Cryptographic primitives for wallet secret storage.

Key derivation uses scrypt (or PBKDF2-SHA256 for records that carry it) and
secrets are sealed with AES-256-GCM. The salt of the owning record is bound
as associated data so a sealed blob cannot be moved to another record.
"""

import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SCRYPT = "scrypt"
PBKDF2_SHA256 = "pbkdf2-sha256"

IV_SIZE = 12  # 96-bit nonce for GCM
TAG_SIZE = 16
RECORD_SALT_SIZE = 16


class AuthenticationError(Exception):
    """Raised when a sealed secret fails its integrity check."""

    pass


@dataclass(frozen=True)
class KdfParams:
    """Snapshot of key derivation parameters.

    Stored on each wallet record at creation time and used for every later
    derivation of that record's key.
    """

    algorithm: str = SCRYPT
    n: int = 16384  # CPU/memory cost
    r: int = 8  # block size
    p: int = 1  # parallelization
    iterations: int = 100000  # PBKDF2 only
    length: int = 32  # derived key length in bytes

    def as_dict(self) -> dict:
        if self.algorithm == PBKDF2_SHA256:
            return {
                "algorithm": self.algorithm,
                "iterations": self.iterations,
                "keylen": self.length,
            }
        return {
            "algorithm": self.algorithm,
            "N": self.n,
            "r": self.r,
            "p": self.p,
            "keylen": self.length,
        }


DEFAULT_KDF = KdfParams()


def derive_key(secret: str, salt: bytes, params: KdfParams = DEFAULT_KDF) -> bytes:
    """Derive a fixed-length key from a secret and salt.

    Args:
        secret: Passphrase or fallback secret
        salt: Random salt bytes
        params: KDF snapshot to apply

    Returns:
        Derived key of ``params.length`` bytes

    Raises:
        ValueError: If the algorithm is not supported
    """
    if params.algorithm == SCRYPT:
        kdf = Scrypt(salt=salt, length=params.length, n=params.n, r=params.r, p=params.p)
    elif params.algorithm == PBKDF2_SHA256:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=params.length,
            salt=salt,
            iterations=params.iterations,
        )
    else:
        raise ValueError(f"Unsupported KDF algorithm: {params.algorithm}")

    return kdf.derive(secret.encode("utf-8"))


def generate_salt(size: int = RECORD_SALT_SIZE) -> bytes:
    """Generate a random salt."""
    return secrets.token_bytes(size)


@dataclass(frozen=True)
class SealedSecret:
    """AES-GCM ciphertext with its nonce and authentication tag."""

    ciphertext: bytes
    iv: bytes
    tag: bytes

    def to_hex(self) -> str:
        """Pack as hex of iv || tag || ciphertext."""
        return (self.iv + self.tag + self.ciphertext).hex()

    @classmethod
    def from_hex(cls, data: str) -> "SealedSecret":
        """Unpack a value produced by ``to_hex``.

        Raises:
            ValueError: If the data is not hex or too short
        """
        raw = bytes.fromhex(data)
        if len(raw) < IV_SIZE + TAG_SIZE:
            raise ValueError("Sealed secret is truncated")
        return cls(
            iv=raw[:IV_SIZE],
            tag=raw[IV_SIZE:IV_SIZE + TAG_SIZE],
            ciphertext=raw[IV_SIZE + TAG_SIZE:],
        )


def seal(plaintext: str, key: bytes, associated_data: Optional[bytes] = None) -> SealedSecret:
    """Encrypt a secret string under a derived key.

    A fresh random IV is drawn for every call.

    Args:
        plaintext: Secret to encrypt (private key or mnemonic)
        key: 32-byte derived key
        associated_data: Bytes authenticated alongside the ciphertext (record salt)

    Returns:
        SealedSecret with ciphertext, iv and tag
    """
    iv = secrets.token_bytes(IV_SIZE)
    encrypted = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), associated_data)
    return SealedSecret(
        ciphertext=encrypted[:-TAG_SIZE],
        iv=iv,
        tag=encrypted[-TAG_SIZE:],
    )


def open_sealed(
    sealed: SealedSecret,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> str:
    """Decrypt a sealed secret.

    Raises:
        AuthenticationError: If the tag does not verify (tampered data,
            wrong key or wrong associated data)
    """
    try:
        plaintext = AESGCM(key).decrypt(
            sealed.iv,
            sealed.ciphertext + sealed.tag,
            associated_data,
        )
    except (InvalidTag, ValueError) as e:
        raise AuthenticationError("Sealed secret failed authentication") from e

    return plaintext.decode("utf-8")


def reseal(
    sealed: SealedSecret,
    old_key: bytes,
    new_key: bytes,
    associated_data: Optional[bytes] = None,
    new_associated_data: Optional[bytes] = None,
) -> SealedSecret:
    """Re-encrypt a sealed secret under a new key.

    Args:
        sealed: Currently sealed secret
        old_key: Key it is sealed under
        new_key: Key to seal it under
        associated_data: Associated data it is currently bound to
        new_associated_data: Associated data to bind to (defaults to the old one)

    Returns:
        Newly sealed secret with a fresh IV
    """
    plaintext = open_sealed(sealed, old_key, associated_data)
    if new_associated_data is None:
        new_associated_data = associated_data
    return seal(plaintext, new_key, new_associated_data)
