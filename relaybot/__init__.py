"""Telegram bot with flood control and batched broadcasts."""

__version__ = "0.1.0"
