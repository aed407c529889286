"""
RoundCompletionTracker: which deployers already acted in the current round.

Entries are added right after submission, not after confirmation, so a
deployer is not reselected while its transaction is in flight. The ledger is
process-local: a restart, or two cranks sharing deployers, can submit twice
for the same deployer and round. CompletionTracker is the seam for a
confirmation-gated or shared implementation.
"""

from __future__ import annotations

from typing import Protocol

from solders.pubkey import Pubkey

from evore_crank.crank_logging import get_logger

logger = get_logger(__name__)


class CompletionTracker(Protocol):
    def mark_submitted(self, deployer: Pubkey, round_id: int) -> None: ...

    def is_submitted(self, deployer: Pubkey, round_id: int) -> bool: ...

    def mark_checkpoint_submitted(self, deployer: Pubkey, checkpoint_round: int) -> None: ...

    def is_checkpoint_submitted(self, deployer: Pubkey, checkpoint_round: int) -> bool: ...

    def forget_checkpoint(self, deployer: Pubkey, checkpoint_round: int) -> None: ...

    def on_round_change(self, new_round_id: int) -> None: ...


class RoundCompletionTracker:
    """In-memory CompletionTracker."""

    def __init__(self) -> None:
        self._submitted: set[tuple[Pubkey, int]] = set()
        self._checkpoints: set[tuple[Pubkey, int]] = set()
        self._round_id: int | None = None

    def __len__(self) -> int:
        return len(self._submitted)

    def entries(self) -> frozenset[tuple[Pubkey, int]]:
        return frozenset(self._submitted)

    def mark_submitted(self, deployer: Pubkey, round_id: int) -> None:
        self._submitted.add((deployer, round_id))

    def is_submitted(self, deployer: Pubkey, round_id: int) -> bool:
        return (deployer, round_id) in self._submitted

    def mark_checkpoint_submitted(self, deployer: Pubkey, checkpoint_round: int) -> None:
        self._checkpoints.add((deployer, checkpoint_round))

    def is_checkpoint_submitted(self, deployer: Pubkey, checkpoint_round: int) -> bool:
        return (deployer, checkpoint_round) in self._checkpoints

    def forget_checkpoint(self, deployer: Pubkey, checkpoint_round: int) -> None:
        """Allow a checkpoint-only action to be retried (its transaction failed or expired)."""
        self._checkpoints.discard((deployer, checkpoint_round))

    def on_round_change(self, new_round_id: int) -> None:
        """Drop every entry that does not belong to new_round_id."""
        before = len(self._submitted)
        self._submitted = {entry for entry in self._submitted if entry[1] == new_round_id}
        self._checkpoints.clear()
        self._round_id = new_round_id
        logger.debug(
            "completion_ledger_pruned",
            round_id=new_round_id,
            pruned=before - len(self._submitted),
        )
