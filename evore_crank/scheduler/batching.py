"""
BatchBuilder: turns an AdmissionResult into transactions.

Deploy intents are split into consecutive groups no larger than the cycle's
capacity ceiling. A group that contains a deployer whose accounts are not yet
in the lookup table cannot be referenced compactly, so such a group is held to
the unaccelerated ceiling. Instruction order per deploy group:

    compute unit limit, compute unit price,
    then per member: [autocheckpoint, recycle_sol] (if a checkpoint is owed), autodeploy

Each checkpoint-only intent becomes its own transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from evore_crank.ledger.addresses import DeployerAddresses
from evore_crank.ledger.instructions import (
    checkpoint_only_preamble,
    compute_budget_preamble,
    mm_autocheckpoint,
    mm_autodeploy,
    recycle_sol,
)
from evore_crank.scheduler.admission import AdmissionResult, DeployIntent
from evore_crank.scheduler.lookup_table import UNLOADED_CAPACITY

DEPLOY = "deploy"
CHECKPOINT_ONLY = "checkpoint_only"


@dataclass(frozen=True)
class Batch:
    kind: str
    intents: tuple[DeployIntent, ...]
    instructions: tuple[Instruction, ...]

    def __len__(self) -> int:
        return len(self.intents)


def partition(
    intents: Sequence[DeployIntent],
    ceiling: int,
    *,
    is_indexed: Callable[[DeployIntent], bool] | None = None,
    unindexed_ceiling: int = UNLOADED_CAPACITY,
) -> list[list[DeployIntent]]:
    """Greedy consecutive grouping; no group exceeds its ceiling and every intent appears once."""
    ceiling = max(1, ceiling)
    groups: list[list[DeployIntent]] = []
    current: list[DeployIntent] = []
    current_unindexed = False
    for intent in intents:
        unindexed = is_indexed is not None and not is_indexed(intent)
        limit = min(ceiling, unindexed_ceiling) if (current_unindexed or unindexed) else ceiling
        if current and len(current) + 1 > limit:
            groups.append(current)
            current, current_unindexed = [], False
        current.append(intent)
        current_unindexed = current_unindexed or unindexed
    if current:
        groups.append(current)
    return groups


class BatchBuilder:
    def __init__(self, program_id: Pubkey, signer: Pubkey, *, auth_id: int, priority_fee: int) -> None:
        self._program_id = program_id
        self._signer = signer
        self._auth_id = auth_id
        self._priority_fee = priority_fee

    def _checkpoint_pair(self, addrs: DeployerAddresses, checkpoint_round: int) -> list[Instruction]:
        return [
            mm_autocheckpoint(
                self._program_id, self._signer, addrs, auth_id=self._auth_id, round_id=checkpoint_round
            ),
            recycle_sol(self._program_id, self._signer, addrs, auth_id=self._auth_id),
        ]

    def deploy_instructions(self, group: Sequence[DeployIntent], round_id: int) -> list[Instruction]:
        instructions = compute_budget_preamble(len(group), self._priority_fee)
        for intent in group:
            deployer = intent.deployer
            if intent.checkpoint_round is not None:
                instructions.extend(self._checkpoint_pair(deployer.addresses, intent.checkpoint_round))
            instructions.append(
                mm_autodeploy(
                    self._program_id,
                    self._signer,
                    deployer.addresses,
                    auth_id=self._auth_id,
                    round_id=round_id,
                    amount=intent.amount_per_square,
                    squares_mask=intent.squares_mask,
                    expected_bps_fee=deployer.bps_fee,
                    expected_flat_fee=deployer.flat_fee,
                )
            )
        return instructions

    def checkpoint_only_instructions(self, intent: DeployIntent) -> list[Instruction]:
        if intent.checkpoint_round is None:
            raise ValueError(f"deployer {intent.deployer.key} owes no checkpoint")
        instructions = checkpoint_only_preamble(self._priority_fee)
        instructions.extend(self._checkpoint_pair(intent.deployer.addresses, intent.checkpoint_round))
        return instructions

    def build(
        self,
        admission: AdmissionResult,
        *,
        ceiling: int,
        is_indexed: Callable[[DeployIntent], bool] | None = None,
    ) -> list[Batch]:
        batches: list[Batch] = []
        for group in partition(admission.to_deploy, ceiling, is_indexed=is_indexed):
            batches.append(
                Batch(DEPLOY, tuple(group), tuple(self.deploy_instructions(group, admission.round_id)))
            )
        for intent in admission.to_checkpoint_only:
            batches.append(
                Batch(CHECKPOINT_ONLY, (intent,), tuple(self.checkpoint_only_instructions(intent)))
            )
        return batches
