"""Shared error types for the crank."""

from evore_crank.core.exceptions import (
    ConfigurationError,
    CrankError,
    DecodeError,
    LedgerUnavailable,
    SubmitRejected,
)

__all__ = [
    "ConfigurationError",
    "CrankError",
    "DecodeError",
    "LedgerUnavailable",
    "SubmitRejected",
]
