"""
AdmissionController: decides, per deployer and per cycle, between a full
autodeploy, a checkpoint + recycle only action, or a skip with a reason.

When the operator sets a required flat fee, deployers whose manager configured
any other flat fee are skipped before their balances are considered.

Deployers are evaluated in a stable order (by address) so that runs over the
same snapshot produce the same admissions and the same batches.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from evore_crank.crank_logging import get_logger
from evore_crank.scheduler.balance import BalanceCalculator, ReserveRequirement
from evore_crank.scheduler.completion import CompletionTracker
from evore_crank.scheduler.models import Deployer, DeployerSnapshot, SkipReason

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeployIntent:
    deployer: Deployer
    amount_per_square: int
    squares_mask: int
    checkpoint_round: int | None = None
    requirement: ReserveRequirement | None = None

    @property
    def needs_checkpoint(self) -> bool:
        return self.checkpoint_round is not None


@dataclass(frozen=True)
class SkippedDeployer:
    deployer: Deployer
    reason: SkipReason
    detail: str = ""


@dataclass
class AdmissionResult:
    round_id: int
    to_deploy: list[DeployIntent] = field(default_factory=list)
    to_checkpoint_only: list[DeployIntent] = field(default_factory=list)
    skipped: list[SkippedDeployer] = field(default_factory=list)

    def skipped_by_reason(self) -> dict[str, int]:
        return dict(Counter(s.reason.value for s in self.skipped))


class AdmissionController:
    def __init__(
        self,
        calculator: BalanceCalculator,
        tracker: CompletionTracker,
        *,
        amount_per_square: int,
        squares_mask: int,
        required_flat_fee: int | None = None,
    ) -> None:
        self._calculator = calculator
        self._tracker = tracker
        self.amount_per_square = amount_per_square
        self.squares_mask = squares_mask
        self.required_flat_fee = required_flat_fee

    def admit(self, round_id: int, snapshots: Iterable[DeployerSnapshot]) -> AdmissionResult:
        result = AdmissionResult(round_id=round_id)
        for snap in sorted(snapshots, key=lambda s: s.deployer.key):
            deployer = snap.deployer
            if snap.error is not None:
                result.skipped.append(SkippedDeployer(deployer, snap.error, snap.detail))
                continue
            if self.required_flat_fee is not None and deployer.flat_fee != self.required_flat_fee:
                result.skipped.append(
                    SkippedDeployer(
                        deployer,
                        SkipReason.WRONG_FEE,
                        f"flat_fee {deployer.flat_fee} (required {self.required_flat_fee})",
                    )
                )
                logger.debug(
                    "admission_wrong_fee",
                    deployer_id=deployer.key,
                    flat_fee=deployer.flat_fee,
                    required_flat_fee=self.required_flat_fee,
                )
                continue
            if self._tracker.is_submitted(deployer.address, round_id):
                result.skipped.append(SkippedDeployer(deployer, SkipReason.ALREADY_SUBMITTED))
                continue

            checkpoint_round = snap.checkpoint_round
            requirement = self._calculator.required_reserve(snap, self.amount_per_square, self.squares_mask)
            intent = DeployIntent(
                deployer=deployer,
                amount_per_square=self.amount_per_square,
                squares_mask=self.squares_mask,
                checkpoint_round=checkpoint_round,
                requirement=requirement,
            )
            if requirement.shortfall == 0:
                result.to_deploy.append(intent)
            elif checkpoint_round is not None:
                if self._tracker.is_checkpoint_submitted(deployer.address, checkpoint_round):
                    result.skipped.append(SkippedDeployer(deployer, SkipReason.CHECKPOINT_PENDING))
                else:
                    result.to_checkpoint_only.append(intent)
            else:
                result.skipped.append(
                    SkippedDeployer(
                        deployer,
                        SkipReason.INSUFFICIENT_BALANCE,
                        f"need {requirement.required}, have {snap.cached_balance}",
                    )
                )
                logger.debug(
                    "admission_insufficient_balance",
                    deployer_id=deployer.key,
                    round_id=round_id,
                    required=requirement.required,
                    balance=snap.cached_balance,
                    shortfall=requirement.shortfall,
                )
        return result
