"""
TransactionSubmitter: compile, sign and send one v0 transaction per batch.

- Accelerated batches compile against the loaded lookup table; addresses not in
  the table are carried as static keys.
- Transport failures are retried with exponential backoff, resending the same
  signed bytes; a rejection from the node is not retried (the next cycle
  rebuilds the batch).
- dry_run signs but does not send.
- Signatures are tracked as pending; poll_pending() reports confirmations,
  on-chain failures and expiries on later cycles without blocking the loop.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from evore_crank.core.exceptions import LedgerUnavailable, SubmitOutcomeUnknown, SubmitRejected
from evore_crank.crank_logging import get_logger
from evore_crank.ledger.reader import LedgerReader

logger = get_logger(__name__)

PACKET_DATA_SIZE = 1232
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SEC = 0.5
DEFAULT_CONFIRM_TIMEOUT_SEC = 30.0
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
# a blockhash is valid for ~150 slots (~60s); later than that the tx can no longer land
DEFAULT_PENDING_TTL_SEC = 90.0

CONFIRMED = "confirmed"
FAILED = "failed"
EXPIRED = "expired"


@dataclass
class PendingTransaction:
    signature: str
    kind: str
    round_id: int | None
    submitted_at: float
    deployers: tuple[Pubkey, ...] = ()
    checkpoint_rounds: tuple[int | None, ...] = ()


class TransactionSubmitter:
    def __init__(
        self,
        reader: LedgerReader,
        payer: Keypair,
        *,
        dry_run: bool = False,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_backoff_sec: float = DEFAULT_RETRY_BACKOFF_SEC,
        confirm_timeout_sec: float = DEFAULT_CONFIRM_TIMEOUT_SEC,
        confirm_poll_interval_sec: float = DEFAULT_CONFIRM_POLL_INTERVAL_SEC,
        pending_ttl_sec: float = DEFAULT_PENDING_TTL_SEC,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reader = reader
        self._payer = payer
        self.dry_run = dry_run
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff_sec = retry_backoff_sec
        self._confirm_timeout_sec = confirm_timeout_sec
        self._confirm_poll_interval_sec = confirm_poll_interval_sec
        self._pending_ttl_sec = pending_ttl_sec
        self._sleep = sleep
        self._clock = clock
        self._pending: dict[str, PendingTransaction] = {}

    @property
    def payer(self) -> Pubkey:
        return self._payer.pubkey()

    @property
    def pending(self) -> list[PendingTransaction]:
        return list(self._pending.values())

    def build_transaction(
        self,
        instructions: Sequence[Instruction],
        lookup_table: AddressLookupTableAccount | None = None,
    ) -> VersionedTransaction:
        """Compile and sign against the latest blockhash. Raises LedgerUnavailable or SubmitRejected."""
        blockhash = self._reader.get_latest_blockhash()
        tables = [lookup_table] if lookup_table is not None else []
        try:
            message = MessageV0.try_compile(self._payer.pubkey(), list(instructions), tables, blockhash)
        except Exception as e:
            raise SubmitRejected(f"message compile failed: {e}") from e
        tx = VersionedTransaction(message, [self._payer])
        size = len(bytes(tx))
        if size > PACKET_DATA_SIZE:
            raise SubmitRejected(f"transaction is {size} bytes (limit {PACKET_DATA_SIZE})")
        return tx

    def submit(
        self,
        instructions: Sequence[Instruction],
        lookup_table: AddressLookupTableAccount | None = None,
        *,
        label: str = "batch",
    ) -> str:
        """
        Send one transaction and return its signature.

        The transaction is signed once; retries resend the same bytes so a copy
        that reached the node before a timeout cannot land twice.
        Raises SubmitRejected (node refused it), SubmitOutcomeUnknown (sent at
        least once, no answer) or LedgerUnavailable (never sent).
        """
        last_error: LedgerUnavailable | None = None
        tx: VersionedTransaction | None = None
        handed_off = False
        for attempt in range(self._retry_attempts):
            try:
                if tx is None:
                    tx = self.build_transaction(instructions, lookup_table)
                signature = str(tx.signatures[0])
                if self.dry_run:
                    logger.info(
                        "crank_dry_run",
                        label=label,
                        signature=signature,
                        instruction_count=len(instructions),
                        accelerated=lookup_table is not None,
                    )
                    return signature
                handed_off = True
                sent = self._reader.submit_transaction(bytes(tx))
                logger.info(
                    "crank_tx_sent",
                    label=label,
                    signature=sent,
                    instruction_count=len(instructions),
                    accelerated=lookup_table is not None,
                )
                return sent
            except LedgerUnavailable as e:
                last_error = e
                backoff = self._retry_backoff_sec * (2 ** attempt)
                logger.warning(
                    "crank_tx_send_failed",
                    label=label,
                    attempt=attempt + 1,
                    error=str(e),
                    backoff_sec=round(backoff, 2),
                )
                if attempt < self._retry_attempts - 1:
                    self._sleep(backoff)
        logger.error("crank_tx_retries_exhausted", label=label, error=str(last_error), sent=handed_off)
        if handed_off and tx is not None:
            raise SubmitOutcomeUnknown(
                f"{label}: no answer from node after {self._retry_attempts} sends: {last_error}",
                signature=str(tx.signatures[0]),
            ) from last_error
        raise last_error or LedgerUnavailable(f"{label}: send failed")

    def confirm(self, signature: str) -> bool:
        """Block until the signature is confirmed, fails, or the timeout passes."""
        if self.dry_run:
            return True
        deadline = self._clock() + self._confirm_timeout_sec
        while self._clock() < deadline:
            try:
                status = self._reader.confirm_transaction(signature)
            except LedgerUnavailable as e:
                logger.warning("crank_tx_confirm_poll_error", signature=signature, error=str(e))
                status = None
            if status is True:
                logger.info("crank_tx_confirmed", signature=signature)
                return True
            if status is False:
                logger.warning("crank_tx_confirm_failed", signature=signature, reason="transaction_failed")
                return False
            self._sleep(self._confirm_poll_interval_sec)
        logger.warning(
            "crank_tx_confirm_failed",
            signature=signature,
            reason="timeout",
            timeout_sec=self._confirm_timeout_sec,
        )
        return False

    def track(
        self,
        signature: str,
        *,
        kind: str,
        round_id: int | None = None,
        deployers: Sequence[Pubkey] = (),
        checkpoint_rounds: Sequence[int | None] = (),
    ) -> None:
        if self.dry_run:
            return
        self._pending[signature] = PendingTransaction(
            signature=signature,
            kind=kind,
            round_id=round_id,
            submitted_at=self._clock(),
            deployers=tuple(deployers),
            checkpoint_rounds=tuple(checkpoint_rounds),
        )

    def poll_pending(self) -> list[tuple[PendingTransaction, str]]:
        """
        Check each tracked signature once. Returns (pending, outcome) for every
        transaction that resolved this call; outcome is confirmed, failed or expired.
        """
        resolved: list[tuple[PendingTransaction, str]] = []
        now = self._clock()
        for signature, pending in list(self._pending.items()):
            try:
                status = self._reader.confirm_transaction(signature)
            except LedgerUnavailable as e:
                logger.debug("crank_pending_poll_error", signature=signature, error=str(e))
                return resolved
            if status is True:
                outcome = CONFIRMED
            elif status is False:
                outcome = FAILED
            elif now - pending.submitted_at > self._pending_ttl_sec:
                outcome = EXPIRED
            else:
                continue
            del self._pending[signature]
            resolved.append((pending, outcome))
            log = logger.info if outcome == CONFIRMED else logger.warning
            log(
                "crank_tx_" + outcome,
                signature=signature,
                kind=pending.kind,
                round_id=pending.round_id,
                deployers=len(pending.deployers),
                age_sec=round(now - pending.submitted_at, 1),
            )
        return resolved
