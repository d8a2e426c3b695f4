"""Per-user passphrase verifier storage."""

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from peridot_vault.crypto import KdfParams, derive_key, generate_salt
from peridot_vault.store import InMemoryStore, RecordStore
from peridot_vault.wallet.base import PassphraseRecord

logger = logging.getLogger(__name__)

PASSPHRASE_SALT_SIZE = 32

# Verification hash parameters; separate from the encryption key derivation
PASSPHRASE_HASH_PARAMS = KdfParams(length=64)


class PassphraseStore:
    """Stores a salted scrypt hash of each user's passphrase.

    The plaintext passphrase is never kept.
    """

    def __init__(
        self,
        store: Optional[RecordStore[int, PassphraseRecord]] = None,
        hash_params: KdfParams = PASSPHRASE_HASH_PARAMS,
    ):
        self._records = store if store is not None else InMemoryStore()
        self._hash_params = hash_params

    def set_passphrase(self, user_id: int, passphrase: str) -> PassphraseRecord:
        """Set or replace a user's passphrase.

        Any previous record for the user is overwritten.
        """
        salt = generate_salt(PASSPHRASE_SALT_SIZE)
        record = PassphraseRecord(
            user_id=user_id,
            hashed_passphrase=derive_key(passphrase, salt, self._hash_params),
            salt=salt,
            kdf=self._hash_params,
            created_at=datetime.now(timezone.utc),
        )
        replaced = user_id in self._records
        self._records.set(user_id, record)
        logger.info(f"Passphrase {'replaced' if replaced else 'set'} for user {user_id}")
        return record

    def verify_passphrase(self, user_id: int, passphrase: str) -> bool:
        """Check a passphrase against the stored hash.

        Returns False when the user has no passphrase record.
        """
        record = self._records.get(user_id)
        if record is None:
            return False

        candidate = derive_key(passphrase, record.salt, record.kdf)
        return hmac.compare_digest(candidate, record.hashed_passphrase)

    def has_passphrase(self, user_id: int) -> bool:
        return user_id in self._records

    def get(self, user_id: int) -> Optional[PassphraseRecord]:
        return self._records.get(user_id)

    def remove(self, user_id: int) -> bool:
        return self._records.delete(user_id)

    def __len__(self) -> int:
        return len(self._records)
