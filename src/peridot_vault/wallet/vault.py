"""Wallet vault: per-user encrypted key storage.

Each user owns at most one wallet. The private key and mnemonic are sealed
with AES-256-GCM under a key derived from either the user's passphrase
(enhanced tier) or a deterministic user-scoped secret (basic tier). The
record's own salt and KDF snapshot are used for every later derivation.

All methods are blocking; the KDF is deliberately slow. Async callers should
run them in a worker thread (see peridot_vault.custody).
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from peridot_vault.crypto import (
    DEFAULT_KDF,
    AuthenticationError,
    KdfParams,
    SealedSecret,
    derive_key,
    generate_salt,
    open_sealed,
    reseal,
    seal,
)
from peridot_vault.store import InMemoryStore, RecordStore
from peridot_vault.wallet.base import (
    DecryptionError,
    GeneratedWallet,
    InvalidPassphraseError,
    PublicWalletView,
    VaultStats,
    WalletExistsError,
    WalletNotFoundError,
    WalletRecord,
)
from peridot_vault.wallet.generator import generate_wallet
from peridot_vault.wallet.passphrase import PassphraseStore

logger = logging.getLogger(__name__)

PRIVATE_KEY = "private_key"
MNEMONIC = "mnemonic"


class WalletVault:
    """Generates, stores and discloses per-user wallets.

    Usage:
        vault = WalletVault()
        view = vault.create_for_user(user_id, passphrase="correct horse battery staple")
        key = vault.get_private_key(user_id, "correct horse battery staple")
    """

    def __init__(
        self,
        wallets: Optional[RecordStore[int, WalletRecord]] = None,
        passphrases: Optional[PassphraseStore] = None,
        kdf_params: KdfParams = DEFAULT_KDF,
        pepper: Optional[str] = None,
        generator: Callable[[], GeneratedWallet] = generate_wallet,
    ):
        """Initialize the vault.

        Args:
            wallets: Wallet record store (in-memory if omitted)
            passphrases: Passphrase store (in-memory if omitted)
            kdf_params: KDF snapshot applied to new records
            pepper: Server-side secret mixed into the basic-tier secret
            generator: Key material source
        """
        self._wallets = wallets if wallets is not None else InMemoryStore()
        self.passphrases = passphrases if passphrases is not None else PassphraseStore()
        self.kdf_params = kdf_params
        self._pepper = pepper
        self._generator = generator

    # Generation

    def generate(self) -> GeneratedWallet:
        """Generate fresh key material without storing it."""
        return self._generator()

    def create_for_user(self, user_id: int, passphrase: Optional[str] = None) -> PublicWalletView:
        """Create and store a wallet for a user.

        If the user already has a passphrase it must be supplied and verify.
        A passphrase supplied by a user without one is stored together with
        the wallet; a failed creation stores neither.

        Returns:
            PublicWalletView carrying the plaintext secrets for one-time display

        Raises:
            WalletExistsError: If the user already has a wallet
            InvalidPassphraseError: If an existing passphrase is missing or wrong
        """
        if user_id in self._wallets:
            logger.info(f"Wallet creation refused for user {user_id}: wallet exists")
            raise WalletExistsError(user_id)

        new_passphrase = False
        if self.passphrases.has_passphrase(user_id):
            if passphrase is None or not self.passphrases.verify_passphrase(user_id, passphrase):
                logger.warning(f"Wallet creation for user {user_id}: passphrase did not verify")
                raise InvalidPassphraseError(user_id)
            secret, has_passphrase = passphrase, True
        elif passphrase is not None:
            secret, has_passphrase, new_passphrase = passphrase, True, True
        else:
            secret, has_passphrase = self._fallback_secret(user_id), False

        wallet = self.generate()
        salt = generate_salt()
        key = derive_key(secret, salt, self.kdf_params)

        record = WalletRecord(
            user_id=user_id,
            address=wallet.address,
            encrypted_private_key=seal(wallet.private_key, key, salt),
            encrypted_mnemonic=seal(wallet.mnemonic, key, salt),
            salt=salt,
            kdf=self.kdf_params,
            created_at=datetime.now(timezone.utc),
            has_passphrase=has_passphrase,
        )

        # Nothing is stored until both secrets are sealed
        if new_passphrase:
            self.passphrases.set_passphrase(user_id, passphrase)
        self._wallets.set(user_id, record)

        logger.info(
            f"Created wallet {wallet.address} for user {user_id} "
            f"({record.security_tier.value} tier, kdf={record.kdf.algorithm})"
        )

        return PublicWalletView(
            user_id=user_id,
            address=record.address,
            has_passphrase=has_passphrase,
            created_at=record.created_at,
            private_key=wallet.private_key,
            mnemonic=wallet.mnemonic,
        )

    # Disclosure

    def get_private_key(self, user_id: int, passphrase: Optional[str] = None) -> str:
        """Decrypt and return a user's private key.

        Raises:
            WalletNotFoundError: If the user has no wallet
            InvalidPassphraseError: If the wallet is passphrase protected and
                the passphrase is missing or wrong
            DecryptionError: If the stored blob fails authentication
        """
        return self._reveal(user_id, passphrase, PRIVATE_KEY)

    def get_mnemonic(self, user_id: int, passphrase: Optional[str] = None) -> str:
        """Decrypt and return a user's recovery phrase.

        Raises the same errors as get_private_key.
        """
        return self._reveal(user_id, passphrase, MNEMONIC)

    def _reveal(self, user_id: int, passphrase: Optional[str], field: str) -> str:
        record = self._require(user_id)
        key = self._unlock(record, passphrase)
        return self._open(record, field, key)

    # Passphrase management

    def verify_passphrase(self, user_id: int, passphrase: str) -> bool:
        return self.passphrases.verify_passphrase(user_id, passphrase)

    def set_passphrase(
        self,
        user_id: int,
        passphrase: str,
        current_passphrase: Optional[str] = None,
    ) -> None:
        """Set or rotate a user's passphrase.

        An existing wallet is re-sealed under the new passphrase with a fresh
        salt; its KDF snapshot is kept. For an enhanced-tier wallet the
        current passphrase is required.

        Raises:
            InvalidPassphraseError: If the current passphrase is required and wrong
            DecryptionError: If the stored blobs fail authentication
        """
        record = self._wallets.get(user_id)
        if record is None:
            self.passphrases.set_passphrase(user_id, passphrase)
            return

        old_key = self._unlock(record, current_passphrase)
        new_salt = generate_salt()
        new_key = derive_key(passphrase, new_salt, record.kdf)
        rewrapped = self._rewrap(record, old_key, new_key, new_salt, has_passphrase=True)

        self.passphrases.set_passphrase(user_id, passphrase)
        self._wallets.set(user_id, rewrapped)
        logger.info(f"Wallet for user {user_id} re-sealed under new passphrase")

    def clear_passphrase(self, user_id: int, current_passphrase: str) -> None:
        """Remove a user's passphrase, moving any wallet to the basic tier.

        Raises:
            InvalidPassphraseError: If the current passphrase is wrong
            DecryptionError: If the stored blobs fail authentication
        """
        if not self.passphrases.verify_passphrase(user_id, current_passphrase):
            logger.warning(f"Passphrase removal for user {user_id}: passphrase did not verify")
            raise InvalidPassphraseError(user_id)

        record = self._wallets.get(user_id)
        if record is not None and record.has_passphrase:
            old_key = derive_key(current_passphrase, record.salt, record.kdf)
            new_salt = generate_salt()
            new_key = derive_key(self._fallback_secret(user_id), new_salt, record.kdf)
            rewrapped = self._rewrap(record, old_key, new_key, new_salt, has_passphrase=False)
            self._wallets.set(user_id, rewrapped)
            logger.info(f"Wallet for user {user_id} moved to basic tier")

        self.passphrases.remove(user_id)

    # Lookup and removal

    def get_wallet(self, user_id: int) -> Optional[PublicWalletView]:
        """Public view of a stored wallet, without secrets."""
        record = self._wallets.get(user_id)
        if record is None:
            return None
        return PublicWalletView(
            user_id=user_id,
            address=record.address,
            has_passphrase=record.has_passphrase,
            created_at=record.created_at,
        )

    def get_record(self, user_id: int) -> Optional[WalletRecord]:
        """Stored record (encrypted) for a user."""
        return self._wallets.get(user_id)

    def has_wallet(self, user_id: int) -> bool:
        return user_id in self._wallets

    def has_passphrase(self, user_id: int) -> bool:
        record = self._wallets.get(user_id)
        return bool(record and record.has_passphrase)

    def remove_wallet(self, user_id: int) -> bool:
        """Delete a user's wallet and passphrase.

        Returns:
            True if a wallet was deleted
        """
        removed = self._wallets.delete(user_id)
        self.passphrases.remove(user_id)
        if removed:
            logger.info(f"Removed wallet for user {user_id}")
        return removed

    def stats(self) -> VaultStats:
        """Get wallet statistics."""
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

        created_today = 0
        with_passphrase = 0
        for record in self._wallets.values():
            if record.created_at >= today:
                created_today += 1
            if record.has_passphrase:
                with_passphrase += 1

        return VaultStats(
            total_wallets=len(self._wallets),
            wallets_created_today=created_today,
            wallets_with_passphrase=with_passphrase,
        )

    # Internals

    def _require(self, user_id: int) -> WalletRecord:
        record = self._wallets.get(user_id)
        if record is None:
            raise WalletNotFoundError(user_id)
        return record

    def _fallback_secret(self, user_id: int) -> str:
        if self._pepper:
            return f"user_{user_id}:{self._pepper}"
        return f"user_{user_id}"

    def _unlock(self, record: WalletRecord, passphrase: Optional[str]) -> bytes:
        """Derive the record's key, verifying the passphrase when required."""
        if record.has_passphrase:
            if passphrase is None or not self.passphrases.verify_passphrase(record.user_id, passphrase):
                logger.warning(f"Invalid passphrase for user {record.user_id}")
                raise InvalidPassphraseError(record.user_id)
            secret = passphrase
        else:
            secret = self._fallback_secret(record.user_id)

        return derive_key(secret, record.salt, record.kdf)

    def _open(self, record: WalletRecord, field: str, key: bytes) -> str:
        sealed: SealedSecret = getattr(record, f"encrypted_{field}")
        try:
            return open_sealed(sealed, key, record.salt)
        except AuthenticationError as e:
            logger.error(
                f"Integrity check failed for {field} of user {record.user_id} "
                f"(kdf={record.kdf.algorithm}); record may be corrupted"
            )
            raise DecryptionError(record.user_id, field) from e

    def _rewrap(
        self,
        record: WalletRecord,
        old_key: bytes,
        new_key: bytes,
        new_salt: bytes,
        has_passphrase: bool,
    ) -> WalletRecord:
        sealed = {}
        for field in (PRIVATE_KEY, MNEMONIC):
            try:
                sealed[field] = reseal(
                    getattr(record, f"encrypted_{field}"),
                    old_key,
                    new_key,
                    record.salt,
                    new_salt,
                )
            except AuthenticationError as e:
                logger.error(f"Integrity check failed re-sealing {field} of user {record.user_id}")
                raise DecryptionError(record.user_id, field) from e

        return replace(
            record,
            encrypted_private_key=sealed[PRIVATE_KEY],
            encrypted_mnemonic=sealed[MNEMONIC],
            salt=new_salt,
            has_passphrase=has_passphrase,
        )
