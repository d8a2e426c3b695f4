"""Pytest configuration and fixtures."""

import os

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"

from peridot_vault.config import Settings
from peridot_vault.crypto import KdfParams
from peridot_vault.custody import CustodyService
from peridot_vault.ratelimit import RateLimiter
from peridot_vault.store import InMemoryStore
from peridot_vault.utils.locks import clear_user_locks
from peridot_vault.wallet.passphrase import PassphraseStore
from peridot_vault.wallet.vault import WalletVault

# Cheap scrypt parameters so the suite stays fast
FAST_KDF = KdfParams(n=1024, r=8, p=1, length=32)
FAST_HASH = KdfParams(n=1024, r=8, p=1, length=64)


class FakeClock:
    """Manually advanced time source in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_locks():
    """Clear per-user locks before each test."""
    clear_user_locks()
    yield
    clear_user_locks()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wallet_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def passphrase_store() -> PassphraseStore:
    return PassphraseStore(hash_params=FAST_HASH)


@pytest.fixture
def vault(wallet_store, passphrase_store) -> WalletVault:
    return WalletVault(
        wallets=wallet_store,
        passphrases=passphrase_store,
        kdf_params=FAST_KDF,
    )


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(min_passphrase_length=8, lock_timeout_seconds=5.0)


@pytest.fixture
def custody(vault, limiter, settings) -> CustodyService:
    return CustodyService(vault=vault, limiter=limiter, settings=settings)
