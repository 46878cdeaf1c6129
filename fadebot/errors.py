from __future__ import annotations


class FadebotError(Exception):
    """Base error for the engagement bot."""


class InvalidInput(FadebotError, ValueError):
    """Raised when a user identifier or message content is malformed.

    Raised before any state is touched, so callers can reject the turn safely.
    """


class GenerationError(FadebotError):
    """Raised by a message generator that could not produce text."""


class StoreError(FadebotError):
    """Raised when the session store or history log cannot complete an operation."""


class ConcurrentUpdateError(StoreError):
    """Raised when a conditional session write finds the round count already moved."""


class ConfigurationError(FadebotError):
    """Raised when settings name an unknown adapter, store or generator."""
