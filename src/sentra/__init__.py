"""Sentra - character chat with streamed replies and cross-friend memory."""

__version__ = "1.0.0"
