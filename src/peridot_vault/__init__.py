"""Peridot Vault - per-user wallet custody for the Peridot Telegram bot."""

__version__ = "1.0.0"
