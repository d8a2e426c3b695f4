"""Wallet custody data types and errors.

Security tiers:
- BASIC: secrets sealed under a key derived from a deterministic per-user
  secret. Protects data at rest but does not depend on anything the user knows.
- ENHANCED: secrets sealed under a key derived from the user's passphrase.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from peridot_vault.crypto import KdfParams, SealedSecret


class SecurityTier(str, Enum):
    """Protection level of a stored wallet."""
    BASIC = "basic"
    ENHANCED = "enhanced"


@dataclass(frozen=True)
class GeneratedWallet:
    """Freshly generated key material."""

    address: str
    private_key: str
    mnemonic: str

    def __repr__(self) -> str:
        return f"GeneratedWallet(address={self.address!r})"


@dataclass(frozen=True)
class WalletRecord:
    """Encrypted wallet stored for a user.

    Attributes:
        user_id: Owning Telegram user ID
        address: Public address (not secret)
        encrypted_private_key: Sealed private key
        encrypted_mnemonic: Sealed recovery phrase
        salt: KDF salt, also bound as associated data to both blobs
        kdf: KDF parameters frozen at creation; always used for derivation
        created_at: Creation time (UTC)
        has_passphrase: Whether the blobs are sealed under a user passphrase
    """
    user_id: int
    address: str
    encrypted_private_key: SealedSecret
    encrypted_mnemonic: SealedSecret
    salt: bytes
    kdf: KdfParams
    created_at: datetime
    has_passphrase: bool

    @property
    def security_tier(self) -> SecurityTier:
        return SecurityTier.ENHANCED if self.has_passphrase else SecurityTier.BASIC


@dataclass(frozen=True)
class PassphraseRecord:
    """Salted hash of a user's passphrase."""

    user_id: int
    hashed_passphrase: bytes
    salt: bytes
    kdf: KdfParams
    created_at: datetime


@dataclass(frozen=True)
class PublicWalletView:
    """Wallet data that may leave the vault.

    ``private_key`` and ``mnemonic`` are only populated on the value returned
    by wallet creation, for one-time display.
    """

    user_id: int
    address: str
    has_passphrase: bool
    created_at: datetime
    private_key: Optional[str] = None
    mnemonic: Optional[str] = None

    @property
    def security_tier(self) -> SecurityTier:
        return SecurityTier.ENHANCED if self.has_passphrase else SecurityTier.BASIC

    def __repr__(self) -> str:
        return (
            f"PublicWalletView(user_id={self.user_id}, address={self.address!r}, "
            f"tier={self.security_tier.value})"
        )


@dataclass(frozen=True)
class VaultStats:
    total_wallets: int
    wallets_created_today: int
    wallets_with_passphrase: int


class VaultError(Exception):
    """Base exception for wallet custody failures."""

    def __init__(self, user_id: int, message: str):
        self.user_id = user_id
        super().__init__(message)


class WalletNotFoundError(VaultError):
    """Raised when a user has no stored wallet."""

    def __init__(self, user_id: int):
        super().__init__(user_id, f"No wallet stored for user {user_id}")


class WalletExistsError(VaultError):
    """Raised when a second wallet is requested for a user."""

    def __init__(self, user_id: int):
        super().__init__(user_id, f"Wallet already exists for user {user_id}")


class InvalidPassphraseError(VaultError):
    """Raised when a required passphrase is missing or does not verify."""

    def __init__(self, user_id: int):
        super().__init__(user_id, "Invalid passphrase")


class DecryptionError(VaultError):
    """Raised when a stored blob fails its integrity check.

    Indicates data corruption or a parameter mismatch, not user error.
    """

    def __init__(self, user_id: int, field: str):
        self.field = field
        super().__init__(user_id, f"Stored {field} for user {user_id} failed authentication")
