"""
RoundMonitor: reads the ORE board and the current slot, classifies the round
phase and signals subscribers when the round id advances.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from evore_crank.core.exceptions import LedgerUnavailable
from evore_crank.crank_logging import get_logger
from evore_crank.ledger.addresses import ore_board_pda
from evore_crank.ledger.codec import decode_board
from evore_crank.ledger.constants import END_SLOT_UNBOUNDED
from evore_crank.ledger.reader import LedgerReader

logger = get_logger(__name__)

DEFAULT_INTERMISSION_SLOTS = 35


class RoundPhase(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    INTERMISSION = "intermission"
    AWAITING_RESET = "awaiting_reset"


def classify_phase(current_slot: int, end_slot: int, intermission_slots: int = DEFAULT_INTERMISSION_SLOTS) -> RoundPhase:
    """
    waiting: end_slot is the unbounded sentinel (first deploy has not started the round)
    active: current_slot <= end_slot
    intermission: 0 < current_slot - end_slot <= intermission_slots
    awaiting_reset: beyond the intermission window
    """
    if end_slot == END_SLOT_UNBOUNDED:
        return RoundPhase.WAITING
    if current_slot <= end_slot:
        return RoundPhase.ACTIVE
    if current_slot - end_slot <= intermission_slots:
        return RoundPhase.INTERMISSION
    return RoundPhase.AWAITING_RESET


@dataclass(frozen=True)
class RoundStatus:
    round_id: int
    phase: RoundPhase
    current_slot: int
    start_slot: int
    end_slot: int
    round_changed: bool = False

    @property
    def slots_remaining(self) -> int | None:
        """Slots until end_slot; None while the round is unbounded, 0 once it has ended."""
        if self.phase is RoundPhase.WAITING:
            return None
        return max(0, self.end_slot - self.current_slot)


class RoundMonitor:
    """
    poll() returns a RoundStatus. Subscribers registered with subscribe() are
    called with the new round id whenever it differs from the last one seen,
    including the first observation.
    """

    def __init__(self, reader: LedgerReader, *, intermission_slots: int = DEFAULT_INTERMISSION_SLOTS) -> None:
        self._reader = reader
        self._intermission_slots = intermission_slots
        self._board_address = ore_board_pda()[0]
        self._subscribers: list[Callable[[int], None]] = []
        self._round_id: int | None = None
        self._phase: RoundPhase | None = None

    @property
    def round_id(self) -> int | None:
        return self._round_id

    def subscribe(self, callback: Callable[[int], None]) -> None:
        self._subscribers.append(callback)

    def poll(self) -> RoundStatus:
        """Raises LedgerUnavailable (RPC) or DecodeError (board layout)."""
        account = self._reader.get_account(self._board_address)
        current_slot = self._reader.get_slot()
        board = decode_board(account.data if account is not None else None)

        previous = self._round_id
        if previous is not None and board.round_id < previous:
            # lagging RPC node; the round id never goes backwards
            raise LedgerUnavailable(f"stale board: round {board.round_id} < last seen {previous}")

        phase = classify_phase(current_slot, board.end_slot, self._intermission_slots)
        changed = board.round_id != previous
        if changed:
            self._round_id = board.round_id
            logger.info("round_changed", round_id=board.round_id, previous_round_id=previous)
            for callback in self._subscribers:
                callback(board.round_id)
        if phase is not self._phase:
            logger.info(
                "round_phase_changed",
                round_id=board.round_id,
                phase=phase.value,
                previous_phase=self._phase.value if self._phase else None,
                current_slot=current_slot,
                end_slot=board.end_slot,
            )
            self._phase = phase

        return RoundStatus(
            round_id=board.round_id,
            phase=phase,
            current_slot=current_slot,
            start_slot=board.start_slot,
            end_slot=board.end_slot,
            round_changed=changed,
        )
