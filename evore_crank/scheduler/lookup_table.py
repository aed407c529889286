"""
LookupTableManager: the crank's address lookup table and the batch-size
ceiling it allows.

UNLOADED (no table, ceiling 2) is a valid terminal state; LOADED raises the
ceiling to 5. The in-memory cache only grows: extension appends chunks of 20
addresses and records a chunk only after its transaction confirms. A failed
chunk stops the extension but earlier chunks stay recorded; calling extend
again with missing_addresses() resumes where it stopped.

Retiring a table is two operator steps: deactivate, then close once
LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS have passed; close returns the rent.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from evore_crank.core.exceptions import (
    LedgerUnavailable,
    LookupTableStateError,
    SubmitOutcomeUnknown,
    SubmitRejected,
)
from evore_crank.crank_logging import get_logger
from evore_crank.ledger.codec import LookupTableRecord, decode_lookup_table
from evore_crank.ledger.instructions import (
    LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS,
    LOOKUP_TABLE_EXTEND_CHUNK,
    close_lookup_table,
    create_lookup_table,
    deactivate_lookup_table,
    extend_lookup_table,
)
from evore_crank.ledger.reader import LedgerReader
from evore_crank.scheduler.submitter import TransactionSubmitter

logger = get_logger(__name__)

UNLOADED_CAPACITY = 2
LOADED_CAPACITY = 5


class LookupTableState(str, Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"


class LookupTableManager:
    def __init__(
        self,
        reader: LedgerReader,
        submitter: TransactionSubmitter,
        authority: Pubkey,
        *,
        chunk_size: int = LOOKUP_TABLE_EXTEND_CHUNK,
    ) -> None:
        self._reader = reader
        self._submitter = submitter
        self._authority = authority
        self._chunk_size = max(1, chunk_size)
        self._table: Pubkey | None = None
        self._ordered: list[Pubkey] = []
        self._known: set[Pubkey] = set()

    @property
    def state(self) -> LookupTableState:
        return LookupTableState.LOADED if self._table is not None else LookupTableState.UNLOADED

    @property
    def capacity_ceiling(self) -> int:
        return LOADED_CAPACITY if self._table is not None else UNLOADED_CAPACITY

    @property
    def table_address(self) -> Pubkey | None:
        return self._table

    @property
    def known_addresses(self) -> frozenset[Pubkey]:
        return frozenset(self._known)

    def _send_and_confirm(self, ix: Instruction, label: str) -> str:
        try:
            signature = self._submitter.submit([ix], label=label)
        except SubmitOutcomeUnknown as e:
            signature = e.signature
        if not self._submitter.confirm(signature):
            raise SubmitRejected(f"{label} {signature} did not confirm")
        return signature

    def load(self, address: Pubkey) -> int:
        """Read the table into the cache. Raises LedgerUnavailable or DecodeError; state is unchanged on error."""
        account = self._reader.get_account(address)
        record = decode_lookup_table(account.data if account is not None else None)
        if not record.is_active:
            logger.warning("lut_deactivated", lut=str(address), deactivation_slot=record.deactivation_slot)
        self._table = address
        self._ordered = list(record.addresses)
        self._known = set(record.addresses)
        logger.info("lut_loaded", lut=str(address), addresses=len(self._ordered))
        return len(self._ordered)

    def create(self) -> Pubkey:
        """Allocate a new empty table owned by the crank authority and switch to it."""
        recent_slot = self._reader.get_slot()
        ix, table = create_lookup_table(self._authority, self._authority, recent_slot)
        signature = self._send_and_confirm(ix, "lut_create")
        self._table = table
        self._ordered = []
        self._known = set()
        logger.info("lut_created", lut=str(table), signature=signature, recent_slot=recent_slot)
        return table

    def missing_addresses(self, candidates: Iterable[Pubkey]) -> list[Pubkey]:
        """Candidates not in the table, deduplicated, in first-seen order."""
        out: list[Pubkey] = []
        seen: set[Pubkey] = set()
        for address in candidates:
            if address in self._known or address in seen:
                continue
            seen.add(address)
            out.append(address)
        return out

    def is_indexed(self, addresses: Iterable[Pubkey]) -> bool:
        return all(a in self._known for a in addresses)

    def extend(self, new_addresses: Iterable[Pubkey]) -> int:
        """Append addresses chunk by chunk. Returns how many were recorded."""
        if self._table is None:
            raise RuntimeError("no lookup table loaded")
        pending = self.missing_addresses(new_addresses)
        if not pending:
            return 0
        if self._submitter.dry_run:
            logger.info("lut_extend_skipped_dry_run", lut=str(self._table), addresses=len(pending))
            return 0
        added = 0
        for start in range(0, len(pending), self._chunk_size):
            chunk = pending[start : start + self._chunk_size]
            ix = extend_lookup_table(self._table, self._authority, self._authority, chunk)
            try:
                signature = self._submitter.submit([ix], label="lut_extend")
            except SubmitOutcomeUnknown as e:
                signature = e.signature
            except (SubmitRejected, LedgerUnavailable) as e:
                logger.warning("lut_extend_failed", lut=str(self._table), added=added, error=str(e))
                break
            if not self._submitter.confirm(signature):
                logger.warning("lut_extend_unconfirmed", lut=str(self._table), added=added, signature=signature)
                break
            self._ordered.extend(chunk)
            self._known.update(chunk)
            added += len(chunk)
            logger.info(
                "lut_extended",
                lut=str(self._table),
                signature=signature,
                chunk=len(chunk),
                total=len(self._ordered),
            )
        return added

    def lookup_table_account(self) -> AddressLookupTableAccount | None:
        if self._table is None:
            return None
        return AddressLookupTableAccount(key=self._table, addresses=list(self._ordered))

    def read_owned(self, address: Pubkey) -> LookupTableRecord:
        """Decode a table and check the crank is its authority. Raises LookupTableStateError."""
        account = self._reader.get_account(address)
        record = decode_lookup_table(account.data if account is not None else None)
        if record.authority != self._authority:
            raise LookupTableStateError(
                f"lookup table {address} is owned by {record.authority}, not {self._authority}"
            )
        return record

    def _forget(self, address: Pubkey) -> None:
        if self._table == address:
            self._table = None
            self._ordered = []
            self._known = set()

    def deactivate(self, address: Pubkey) -> str | None:
        """
        Start the close cooldown. Returns the signature, or None when the table
        was already deactivated. A deactivated table can no longer be used by
        transactions, so it is dropped from the cache.
        """
        record = self.read_owned(address)
        if not record.is_active:
            logger.info("lut_already_deactivated", lut=str(address), deactivation_slot=record.deactivation_slot)
            return None
        signature = self._send_and_confirm(deactivate_lookup_table(address, self._authority), "lut_deactivate")
        self._forget(address)
        logger.info("lut_deactivation_confirmed", lut=str(address), signature=signature)
        return signature

    def close(self, address: Pubkey, recipient: Pubkey | None = None) -> str:
        """Close a deactivated table whose cooldown has passed; rent goes to recipient (default: authority)."""
        record = self.read_owned(address)
        if record.is_active:
            raise LookupTableStateError(f"lookup table {address} is still active; deactivate it first")
        current_slot = self._reader.get_slot()
        elapsed = max(0, current_slot - record.deactivation_slot)
        if elapsed < LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS:
            raise LookupTableStateError(
                f"lookup table {address} deactivated at slot {record.deactivation_slot}; "
                f"{LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS - elapsed} more slots before it can be closed"
            )
        ix = close_lookup_table(address, self._authority, recipient or self._authority)
        signature = self._send_and_confirm(ix, "lut_close")
        self._forget(address)
        logger.info("lut_closed", lut=str(address), signature=signature, recipient=str(recipient or self._authority))
        return signature
