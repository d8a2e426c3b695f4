"""EVM wallet generation.

Produces a random secp256k1 key pair with a BIP-39 recovery phrase.
Derivation path: m/44'/60'/0'/0/0
"""

from eth_account import Account

from peridot_vault.wallet.base import GeneratedWallet

# Required for mnemonic support in eth-account
Account.enable_unaudited_hdwallet_features()

MNEMONIC_WORDS = 12
DERIVATION_PATH = "m/44'/60'/0'/0/0"


def generate_wallet() -> GeneratedWallet:
    """Generate a new wallet from OS randomness.

    Returns:
        GeneratedWallet with checksum address, 0x-prefixed private key and mnemonic
    """
    account, mnemonic = Account.create_with_mnemonic(
        num_words=MNEMONIC_WORDS,
        account_path=DERIVATION_PATH,
    )
    return GeneratedWallet(
        address=account.address,
        private_key="0x" + bytes(account.key).hex(),
        mnemonic=mnemonic,
    )
