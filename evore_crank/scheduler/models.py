"""
Deployer and per-cycle snapshot types shared by the scheduler components.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from solders.pubkey import Pubkey

from evore_crank.ledger.addresses import DeployerAddresses, derive_deployer_addresses
from evore_crank.ledger.codec import MinerRecord, decode_deployer
from evore_crank.ledger.reader import AccountSnapshot


class SkipReason(str, Enum):
    ALREADY_SUBMITTED = "already_submitted"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    CHECKPOINT_PENDING = "checkpoint_pending"
    DECODE_ERROR = "decode_error"
    DATA_UNAVAILABLE = "data_unavailable"
    WRONG_FEE = "wrong_fee"


@dataclass(frozen=True)
class Deployer:
    """
    A deployer PDA whose deploy_authority is this crank. Identity is the PDA address.
    Fees are the values read at discovery; they are passed to the program as the
    expected fees so a deploy is rejected if the manager changes them mid-run.
    """

    address: Pubkey
    manager: Pubkey
    deploy_authority: Pubkey
    bps_fee: int
    flat_fee: int
    addresses: DeployerAddresses

    @property
    def key(self) -> str:
        return str(self.address)

    @classmethod
    def from_account(cls, program_id: Pubkey, account: AccountSnapshot, auth_id: int) -> Deployer:
        """Decode a deployer account; raises DecodeError on layout mismatch."""
        record = decode_deployer(account.data)
        addrs = derive_deployer_addresses(program_id, record.manager, auth_id)
        return cls(
            address=account.address,
            manager=record.manager,
            deploy_authority=record.deploy_authority,
            bps_fee=record.bps_fee,
            flat_fee=record.flat_fee,
            addresses=addrs,
        )


@dataclass(frozen=True)
class DeployerSnapshot:
    """
    Balances and miner state of one deployer, read in a single batch at the start of a cycle.
    `error` is set when the deployer's accounts could not be read or decoded this cycle.
    """

    deployer: Deployer
    cached_balance: int = 0
    auth_balance: int = 0
    miner: MinerRecord | None = None
    miner_exists: bool = False
    error: SkipReason | None = None
    detail: str = ""

    @property
    def checkpoint_round(self) -> int | None:
        """Round owed a checkpoint, or None."""
        if self.miner is not None and self.miner.checkpoint_owed:
            return self.miner.round_id
        return None
