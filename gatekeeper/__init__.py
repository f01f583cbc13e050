"""Gatekeeper: human-in-the-loop network admission control over Telegram."""

__version__ = "1.0.0"
