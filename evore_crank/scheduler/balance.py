"""
BalanceCalculator: lamports a deployer's autodeploy balance must hold before
an autodeploy can succeed.

    required  = max(0, rent_exempt_reserve + protocol_fee + amount * popcount(mask)
                       + miner_creation_rent (miner absent) - auth_balance)
    shortfall = max(0, required - cached_balance)

The deployer's own service fee (bps of the deployed amount plus a flat fee)
is reported alongside but is paid from a separate pool and is not part of
`required`. Integers only.
"""

from __future__ import annotations

from dataclasses import dataclass

from solders.pubkey import Pubkey

from evore_crank.ledger.codec import MINER_LEN, rent_exempt_minimum
from evore_crank.ledger.constants import (
    AUTH_PDA_RENT,
    ORE_CHECKPOINT_FEE,
    PROTOCOL_DEPLOY_FEE,
    SQUARES_MASK_BITS,
)
from evore_crank.scheduler.models import DeployerSnapshot

BPS_DENOMINATOR = 10_000


def popcount(squares_mask: int) -> int:
    return bin(squares_mask & SQUARES_MASK_BITS).count("1")


def service_fee(total_deployed: int, bps_fee: int, flat_fee: int) -> int:
    return total_deployed * bps_fee // BPS_DENOMINATOR + flat_fee


@dataclass(frozen=True)
class ReserveRequirement:
    required: int
    shortfall: int
    total_deployed: int
    service_fee: int
    miner_rent: int


class BalanceCalculator:
    """
    Miner existence is cached per miner address once observed: a created miner
    is never closed by the crank, so later reads that miss it are treated as lag.
    """

    def __init__(
        self,
        *,
        rent_exempt_reserve: int = AUTH_PDA_RENT + ORE_CHECKPOINT_FEE,
        protocol_fee: int = PROTOCOL_DEPLOY_FEE,
        miner_creation_rent: int | None = None,
    ) -> None:
        self.rent_exempt_reserve = rent_exempt_reserve
        self.protocol_fee = protocol_fee
        self.miner_creation_rent = (
            rent_exempt_minimum(MINER_LEN) if miner_creation_rent is None else miner_creation_rent
        )
        self._known_miners: set[Pubkey] = set()

    def miner_exists(self, deployer: DeployerSnapshot) -> bool:
        miner = deployer.deployer.addresses.ore_miner
        if deployer.miner_exists:
            self._known_miners.add(miner)
        return miner in self._known_miners

    def required_reserve(
        self,
        deployer: DeployerSnapshot,
        amount_per_square: int,
        squares_mask: int,
    ) -> ReserveRequirement:
        total_deployed = amount_per_square * popcount(squares_mask)
        miner_rent = 0 if self.miner_exists(deployer) else self.miner_creation_rent
        needed = (
            self.rent_exempt_reserve
            + self.protocol_fee
            + total_deployed
            + miner_rent
            - deployer.auth_balance
        )
        required = max(0, needed)
        return ReserveRequirement(
            required=required,
            shortfall=max(0, required - deployer.cached_balance),
            total_deployed=total_deployed,
            service_fee=service_fee(total_deployed, deployer.deployer.bps_fee, deployer.deployer.flat_fee),
            miner_rent=miner_rent,
        )
