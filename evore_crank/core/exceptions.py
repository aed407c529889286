"""
Crank error taxonomy.

- LedgerUnavailable: RPC transport failure or timeout. Transient; the cycle is skipped.
  SubmitOutcomeUnknown is the send-time variant: the transaction may have landed.
- DecodeError: an account did not match its fixed layout. Excludes one deployer for the cycle.
- SubmitRejected: the RPC node refused a transaction. Scoped to one batch.
- LookupTableStateError: operator lookup table command refused because of the table state or its authority.
- ConfigurationError: invalid settings. Fatal, raised only at startup.

Insufficient balance is an expected steady state and is reported as a skip
reason (see scheduler.models.SkipReason), not raised.
"""

from __future__ import annotations


class CrankError(Exception):
    """Base class for crank errors."""


class LedgerUnavailable(CrankError):
    """Ledger data could not be read (timeout, transport or RPC error)."""


class SubmitOutcomeUnknown(LedgerUnavailable):
    """
    The transaction was handed to the node but no answer came back, so it may
    have landed. Carries the signature so its status can be polled.
    """

    def __init__(self, message: str, *, signature: str) -> None:
        super().__init__(message)
        self.signature = signature


class DecodeError(CrankError):
    """Account data does not match the expected record layout."""

    def __init__(self, record: str, message: str) -> None:
        super().__init__(f"{record}: {message}")
        self.record = record


class SubmitRejected(CrankError):
    """Transaction was rejected by the RPC node (preflight failure, stale blockhash, low fee)."""

    def __init__(self, message: str, *, code: int | None = None, logs: list[str] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.logs = logs or []


class LookupTableStateError(CrankError):
    """Lookup table is not owned by the crank, or not in the state an operation needs."""


class ConfigurationError(CrankError):
    """Startup configuration is missing or invalid."""
