"""Utility modules for peridot-vault."""

from peridot_vault.utils.locks import LockTimeoutError, prune_user_locks, user_lock

__all__ = ["LockTimeoutError", "prune_user_locks", "user_lock"]
