"""Custody service: the in-process API consumed by the bot layer.

Every operation on a user runs under that user's lock. Sensitive operations
are gated by the rate limiter, and KDF/encryption work is pushed to a worker
thread so one user's derivation does not stall updates for other users.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from peridot_vault.config import Settings, get_settings
from peridot_vault.ratelimit import RateLimitDecision, RateLimitedError, RateLimiter
from peridot_vault.utils.locks import UserLock, prune_user_locks, user_lock
from peridot_vault.wallet.base import InvalidPassphraseError, PublicWalletView
from peridot_vault.wallet.vault import WalletVault

logger = logging.getLogger(__name__)

EXPORT_PRIVATE_KEY = "export_private_key"
EXPORT_MNEMONIC = "export_mnemonic"
SET_PASSPHRASE = "set_passphrase"
VERIFY_PASSPHRASE = "verify_passphrase"


class CustodyService:
    """Rate-limited, per-user serialized access to the wallet vault."""

    def __init__(
        self,
        vault: Optional[WalletVault] = None,
        limiter: Optional[RateLimiter] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.vault = vault or WalletVault(
            kdf_params=self.settings.default_kdf_params(),
            pepper=self.settings.vault_pepper,
        )
        self.limiter = limiter or RateLimiter.from_settings(self.settings)

    def _lock(self, user_id: int, operation: str) -> AsyncContextManager[UserLock]:
        return user_lock(
            user_id,
            timeout=self.settings.lock_timeout_seconds,
            operation=operation,
        )

    def _ensure_allowed(self, user_id: int, action: str) -> RateLimitDecision:
        decision = self.limiter.check(user_id, action)
        if not decision.allowed:
            logger.warning(
                f"Denied '{action}' for user {user_id}: {decision.reason.value} "
                f"(retry in {decision.retry_after:.0f}s)"
            )
            raise RateLimitedError(user_id, action, decision)
        return decision

    def _validate_passphrase(self, passphrase: str) -> None:
        minimum = self.settings.min_passphrase_length
        if len(passphrase) < minimum:
            raise ValueError(f"Passphrase must be at least {minimum} characters long")

    # Wallet lifecycle

    async def create_wallet(
        self,
        user_id: int,
        passphrase: Optional[str] = None,
    ) -> PublicWalletView:
        """Create a wallet; the returned view carries the secrets once.

        When the user already has a passphrase, creation checks it and wrong
        guesses count against the verify_passphrase limit.

        Raises:
            WalletExistsError: If the user already has a wallet
            InvalidPassphraseError: If the user's existing passphrase is missing or wrong
            RateLimitedError: If passphrase guesses are throttled
            ValueError: If a new passphrase is too short
        """
        async with self._lock(user_id, "create_wallet"):
            if not self.vault.passphrases.has_passphrase(user_id):
                if passphrase is not None:
                    self._validate_passphrase(passphrase)
                return await asyncio.to_thread(self.vault.create_for_user, user_id, passphrase)

            self._ensure_allowed(user_id, VERIFY_PASSPHRASE)
            try:
                return await asyncio.to_thread(self.vault.create_for_user, user_id, passphrase)
            except InvalidPassphraseError:
                self.limiter.record(user_id, VERIFY_PASSPHRASE)
                raise

    def get_wallet(self, user_id: int) -> Optional[PublicWalletView]:
        return self.vault.get_wallet(user_id)

    async def remove_wallet(self, user_id: int) -> bool:
        """Delete a user's wallet and passphrase. Rate limit history is kept."""
        async with self._lock(user_id, "remove_wallet"):
            return self.vault.remove_wallet(user_id)

    # Disclosure

    async def export_private_key(self, user_id: int, passphrase: Optional[str] = None) -> str:
        """Rate-limited private key disclosure.

        Raises:
            RateLimitedError: If the export is throttled
            WalletNotFoundError: If the user has no wallet
            InvalidPassphraseError: If the passphrase is missing or wrong
            DecryptionError: If the stored blob fails authentication
        """
        return await self._disclose(user_id, passphrase, EXPORT_PRIVATE_KEY, self.vault.get_private_key)

    async def export_mnemonic(self, user_id: int, passphrase: Optional[str] = None) -> str:
        """Rate-limited recovery phrase disclosure. Raises as export_private_key."""
        return await self._disclose(user_id, passphrase, EXPORT_MNEMONIC, self.vault.get_mnemonic)

    async def _disclose(
        self,
        user_id: int,
        passphrase: Optional[str],
        action: str,
        reveal: Callable[[int, Optional[str]], str],
    ) -> str:
        async with self._lock(user_id, action):
            self._ensure_allowed(user_id, action)
            try:
                secret = await asyncio.to_thread(reveal, user_id, passphrase)
            except InvalidPassphraseError:
                # Wrong guesses count against the limit
                self.limiter.record(user_id, action)
                raise
            self.limiter.record(user_id, action)
            logger.info(f"Performed '{action}' for user {user_id}")
            return secret

    # Passphrase management

    async def set_passphrase(
        self,
        user_id: int,
        passphrase: str,
        current_passphrase: Optional[str] = None,
    ) -> None:
        """Set or rotate a passphrase, re-sealing any existing wallet.

        Raises:
            ValueError: If the new passphrase is too short
            RateLimitedError: If passphrase changes are throttled
            InvalidPassphraseError: If the current passphrase is required and wrong
        """
        self._validate_passphrase(passphrase)

        async with self._lock(user_id, SET_PASSPHRASE):
            self._ensure_allowed(user_id, SET_PASSPHRASE)
            try:
                await asyncio.to_thread(
                    self.vault.set_passphrase, user_id, passphrase, current_passphrase
                )
            finally:
                self.limiter.record(user_id, SET_PASSPHRASE)

    async def clear_passphrase(self, user_id: int, current_passphrase: str) -> None:
        """Remove a passphrase, moving any wallet to the basic tier."""
        async with self._lock(user_id, SET_PASSPHRASE):
            self._ensure_allowed(user_id, SET_PASSPHRASE)
            try:
                await asyncio.to_thread(self.vault.clear_passphrase, user_id, current_passphrase)
            finally:
                self.limiter.record(user_id, SET_PASSPHRASE)

    async def verify_passphrase(self, user_id: int, passphrase: str) -> bool:
        """Check a passphrase; failed checks count against verify_passphrase.

        Raises:
            RateLimitedError: If passphrase guesses are throttled
        """
        async with self._lock(user_id, VERIFY_PASSPHRASE):
            self._ensure_allowed(user_id, VERIFY_PASSPHRASE)
            valid = await asyncio.to_thread(self.vault.verify_passphrase, user_id, passphrase)
            if not valid:
                self.limiter.record(user_id, VERIFY_PASSPHRASE)
            return valid

    # Rate limiting

    def check_rate_limit(self, user_id: int, action: str) -> RateLimitDecision:
        return self.limiter.check(user_id, action)

    def record_attempt(self, user_id: int, action: str) -> None:
        self.limiter.record(user_id, action)

    @asynccontextmanager
    async def gated(self, user_id: int, action: str) -> AsyncIterator[RateLimitDecision]:
        """Run a protocol action under the user's lock and rate limit.

        The attempt is recorded only if the body completes without raising.

        Example:
            async with custody.gated(user_id, "supply"):
                tx_hash = await relay.execute_write("supply", params, address)
        """
        async with self._lock(user_id, action):
            decision = self._ensure_allowed(user_id, action)
            yield decision
            self.limiter.record(user_id, action)

    # Housekeeping

    def cleanup(self) -> int:
        """Drop expired rate limit entries and idle locks of inactive users.

        Safe to call on any cadence.

        Returns:
            Number of rate limit entries removed
        """
        removed = self.limiter.cleanup()
        limited = self.limiter.active_users()
        prune_user_locks(
            lambda user_id: user_id in limited
            or self.vault.has_wallet(user_id)
            or self.vault.passphrases.has_passphrase(user_id)
        )
        return removed

    def stats(self) -> dict:
        return {
            "wallets": self.vault.stats(),
            "rate_limits": self.limiter.stats(),
        }


@lru_cache(maxsize=1)
def get_custody_service() -> CustodyService:
    """Get the process-wide custody service."""
    return CustodyService()
