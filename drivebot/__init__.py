"""Telegram bot that relays publicly shared Google Drive files into the chat."""

__version__ = "1.0.0"
