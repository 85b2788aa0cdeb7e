"""Error taxonomy shared by the store, resolver, executor and fan-out."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Structured error codes surfaced in results (never raised)."""

    NOT_AUTHENTICATED = "not_authenticated"
    AI_ERROR = "ai_error"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNKNOWN_ACTION = "unknown_action"
    STORE_ERROR = "store_error"


class SwungError(Exception):
    """Base exception for the assistant."""


class StoreError(SwungError):
    """Raised when a SQLite operation fails."""


class LLMError(SwungError):
    """Raised when the language model call fails, times out or returns a bad status."""


class CredentialError(SwungError):
    """Raised when an upstream credential cannot be loaded or refreshed."""
