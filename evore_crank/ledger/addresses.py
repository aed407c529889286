"""
Program-derived address derivation for Evore and ORE accounts.

Derivations are pure and memoized; a deployer's full account set is
computed once per process and reused every cycle.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from functools import lru_cache

from solders.pubkey import Pubkey

from evore_crank.ledger.constants import (
    AUTODEPLOY_BALANCE_SEED,
    AUTOMATION_SEED,
    BOARD_SEED,
    CONFIG_SEED,
    DEPLOYER_SEED,
    ENTROPY_PROGRAM_ID,
    ENTROPY_VAR_SEED,
    FEE_COLLECTOR,
    MANAGED_MINER_AUTH_SEED,
    MINER_SEED,
    ORE_PROGRAM_ID,
    ORE_TREASURY_ADDRESS,
    ROUND_SEED,
    SYSTEM_PROGRAM_ID,
)


def _u64(value: int) -> bytes:
    return struct.pack("<Q", value)


@lru_cache(maxsize=4096)
def managed_miner_auth_pda(program_id: Pubkey, manager: Pubkey, auth_id: int) -> tuple[Pubkey, int]:
    """Seeds: ['managed-miner-auth', manager, auth_id u64 LE]."""
    return Pubkey.find_program_address(
        [MANAGED_MINER_AUTH_SEED, bytes(manager), _u64(auth_id)], program_id
    )


@lru_cache(maxsize=4096)
def deployer_pda(program_id: Pubkey, manager: Pubkey) -> tuple[Pubkey, int]:
    """Seeds: ['deployer', manager]."""
    return Pubkey.find_program_address([DEPLOYER_SEED, bytes(manager)], program_id)


@lru_cache(maxsize=4096)
def autodeploy_balance_pda(program_id: Pubkey, deployer: Pubkey) -> tuple[Pubkey, int]:
    """Seeds: ['autodeploy-balance', deployer]."""
    return Pubkey.find_program_address([AUTODEPLOY_BALANCE_SEED, bytes(deployer)], program_id)


@lru_cache(maxsize=4096)
def ore_miner_pda(authority: Pubkey) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([MINER_SEED, bytes(authority)], ORE_PROGRAM_ID)


@lru_cache(maxsize=4096)
def ore_automation_pda(authority: Pubkey) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([AUTOMATION_SEED, bytes(authority)], ORE_PROGRAM_ID)


@lru_cache(maxsize=64)
def ore_round_pda(round_id: int) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([ROUND_SEED, _u64(round_id)], ORE_PROGRAM_ID)


@lru_cache(maxsize=1)
def ore_board_pda() -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([BOARD_SEED], ORE_PROGRAM_ID)


@lru_cache(maxsize=1)
def ore_config_pda() -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([CONFIG_SEED], ORE_PROGRAM_ID)


@lru_cache(maxsize=4)
def entropy_var_pda(authority: Pubkey, var_id: int = 0) -> tuple[Pubkey, int]:
    """Entropy var owned by the board. Seeds: ['var', authority, id u64 LE]."""
    return Pubkey.find_program_address(
        [ENTROPY_VAR_SEED, bytes(authority), _u64(var_id)], ENTROPY_PROGRAM_ID
    )


@dataclass(frozen=True)
class DeployerAddresses:
    """Every per-deployer account an autodeploy or checkpoint touches."""

    manager: Pubkey
    deployer: Pubkey
    deployer_bump: int
    autodeploy_balance: Pubkey
    autodeploy_balance_bump: int
    managed_miner_auth: Pubkey
    auth_bump: int
    ore_miner: Pubkey
    automation: Pubkey

    def lookup_addresses(self) -> list[Pubkey]:
        """Accounts worth indexing in a lookup table (stable for the deployer's lifetime)."""
        return [
            self.manager,
            self.deployer,
            self.autodeploy_balance,
            self.managed_miner_auth,
            self.ore_miner,
            self.automation,
        ]


@lru_cache(maxsize=4096)
def derive_deployer_addresses(program_id: Pubkey, manager: Pubkey, auth_id: int) -> DeployerAddresses:
    deployer, deployer_bump = deployer_pda(program_id, manager)
    balance, balance_bump = autodeploy_balance_pda(program_id, deployer)
    auth, auth_bump = managed_miner_auth_pda(program_id, manager, auth_id)
    return DeployerAddresses(
        manager=manager,
        deployer=deployer,
        deployer_bump=deployer_bump,
        autodeploy_balance=balance,
        autodeploy_balance_bump=balance_bump,
        managed_miner_auth=auth,
        auth_bump=auth_bump,
        ore_miner=ore_miner_pda(auth)[0],
        automation=ore_automation_pda(auth)[0],
    )


def shared_static_addresses(program_id: Pubkey) -> list[Pubkey]:
    """
    Accounts referenced by every autodeploy regardless of deployer.
    Round accounts are excluded: they change every round.
    """
    board = ore_board_pda()[0]
    return [
        SYSTEM_PROGRAM_ID,
        ORE_PROGRAM_ID,
        ENTROPY_PROGRAM_ID,
        FEE_COLLECTOR,
        ORE_TREASURY_ADDRESS,
        board,
        ore_config_pda()[0],
        entropy_var_pda(board, 0)[0],
        program_id,
    ]
