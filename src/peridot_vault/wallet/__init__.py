"""Per-user wallet custody."""

from peridot_vault.wallet.base import (
    DecryptionError,
    GeneratedWallet,
    InvalidPassphraseError,
    PublicWalletView,
    SecurityTier,
    VaultError,
    WalletExistsError,
    WalletNotFoundError,
)
from peridot_vault.wallet.passphrase import PassphraseStore
from peridot_vault.wallet.vault import WalletVault

__all__ = [
    "WalletVault",
    "PassphraseStore",
    "GeneratedWallet",
    "PublicWalletView",
    "SecurityTier",
    "VaultError",
    "WalletNotFoundError",
    "WalletExistsError",
    "InvalidPassphraseError",
    "DecryptionError",
]
