"""
Instruction builders: Evore autodeploy, autocheckpoint and recycle, the
compute-budget preamble, and address lookup table create/extend.

Data layouts are packed little-endian structs; account order matches the
on-chain processors exactly.
"""

from __future__ import annotations

import struct
from enum import IntEnum

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from evore_crank.ledger.addresses import (
    DeployerAddresses,
    entropy_var_pda,
    ore_board_pda,
    ore_config_pda,
    ore_round_pda,
)
from evore_crank.ledger.constants import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    ENTROPY_PROGRAM_ID,
    FEE_COLLECTOR,
    ORE_PROGRAM_ID,
    ORE_TREASURY_ADDRESS,
    SYSTEM_PROGRAM_ID,
)

COMPUTE_UNITS_PER_DEPLOY = 400_000
MAX_COMPUTE_UNITS = 1_400_000
CHECKPOINT_ONLY_COMPUTE_UNITS = 200_000
LOOKUP_TABLE_EXTEND_CHUNK = 20


class EvoreInstruction(IntEnum):
    CREATE_MANAGER = 0
    MM_DEPLOY = 1
    MM_CHECKPOINT = 2
    MM_CLAIM_SOL = 3
    MM_CLAIM_ORE = 4
    CREATE_DEPLOYER = 5
    UPDATE_DEPLOYER = 6
    MM_AUTODEPLOY = 7
    DEPOSIT_AUTODEPLOY_BALANCE = 8
    RECYCLE_SOL = 9
    WITHDRAW_AUTODEPLOY_BALANCE = 10
    MM_AUTOCHECKPOINT = 11


# tag, auth_id, bump, deployer_bump, autodeploy_balance_bump, pad[5], amount, squares_mask u32, pad[4],
# expected_bps_fee, expected_flat_fee
MM_AUTODEPLOY_LAYOUT = struct.Struct("<BQBBB5xQI4xQQ")  # 49 bytes
# tag, auth_id, bump
AUTH_ONLY_LAYOUT = struct.Struct("<BQB")  # 10 bytes

# bincode enum index (u32) of the lookup table program instructions
LOOKUP_TABLE_CREATE = 0
LOOKUP_TABLE_EXTEND = 2
LOOKUP_TABLE_DEACTIVATE = 3
LOOKUP_TABLE_CLOSE = 4
# a deactivated table can be closed once this many slots have passed (slot hashes depth)
LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS = 512


def _w(pubkey: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=True)


def _r(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=False, is_writable=False)


def compute_budget_preamble(deploy_count: int, priority_fee: int) -> list[Instruction]:
    """Unit limit proportional to the number of deploys (capped), then the unit price."""
    units = min(max(1, deploy_count) * COMPUTE_UNITS_PER_DEPLOY, MAX_COMPUTE_UNITS)
    return [set_compute_unit_limit(units), set_compute_unit_price(priority_fee)]


def checkpoint_only_preamble(priority_fee: int) -> list[Instruction]:
    return [set_compute_unit_limit(CHECKPOINT_ONLY_COMPUTE_UNITS), set_compute_unit_price(priority_fee)]


def mm_autodeploy(
    program_id: Pubkey,
    signer: Pubkey,
    addrs: DeployerAddresses,
    *,
    auth_id: int,
    round_id: int,
    amount: int,
    squares_mask: int,
    expected_bps_fee: int = 0,
    expected_flat_fee: int = 0,
) -> Instruction:
    """
    Deploy `amount` lamports on every square in `squares_mask` from the deployer's
    autodeploy balance. The program rejects the deploy if the deployer's fees no
    longer match expected_bps_fee / expected_flat_fee (0 skips the check).
    """
    board = ore_board_pda()[0]
    data = MM_AUTODEPLOY_LAYOUT.pack(
        EvoreInstruction.MM_AUTODEPLOY,
        auth_id,
        addrs.auth_bump,
        addrs.deployer_bump,
        addrs.autodeploy_balance_bump,
        amount,
        squares_mask,
        expected_bps_fee,
        expected_flat_fee,
    )
    accounts = [
        _w(signer, signer=True),
        _w(addrs.manager),
        _w(addrs.deployer),
        _w(addrs.autodeploy_balance),
        _w(addrs.managed_miner_auth),
        _w(addrs.ore_miner),
        _w(FEE_COLLECTOR),
        _w(addrs.automation),
        _w(ore_config_pda()[0]),
        _w(board),
        _w(ore_round_pda(round_id)[0]),
        _w(entropy_var_pda(board, 0)[0]),
        _r(ORE_PROGRAM_ID),
        _r(ENTROPY_PROGRAM_ID),
        _r(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def mm_autocheckpoint(
    program_id: Pubkey,
    signer: Pubkey,
    addrs: DeployerAddresses,
    *,
    auth_id: int,
    round_id: int,
) -> Instruction:
    """Checkpoint `round_id` for the deployer's managed miner."""
    data = AUTH_ONLY_LAYOUT.pack(EvoreInstruction.MM_AUTOCHECKPOINT, auth_id, addrs.auth_bump)
    accounts = [
        _w(signer, signer=True),
        _w(addrs.manager),
        _w(addrs.deployer),
        _w(addrs.managed_miner_auth),
        _w(addrs.ore_miner),
        _w(ORE_TREASURY_ADDRESS),
        _w(ore_board_pda()[0]),
        _w(ore_round_pda(round_id)[0]),
        _r(SYSTEM_PROGRAM_ID),
        _r(ORE_PROGRAM_ID),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def recycle_sol(program_id: Pubkey, signer: Pubkey, addrs: DeployerAddresses, *, auth_id: int) -> Instruction:
    """Move claimable SOL from the ORE miner back into the autodeploy balance."""
    data = AUTH_ONLY_LAYOUT.pack(EvoreInstruction.RECYCLE_SOL, auth_id, addrs.auth_bump)
    accounts = [
        _w(signer, signer=True),
        _w(addrs.manager),
        _w(addrs.deployer),
        _w(addrs.autodeploy_balance),
        _w(addrs.managed_miner_auth),
        _w(addrs.ore_miner),
        _r(ORE_PROGRAM_ID),
        _r(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def derive_lookup_table_address(authority: Pubkey, recent_slot: int) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [bytes(authority), struct.pack("<Q", recent_slot)], ADDRESS_LOOKUP_TABLE_PROGRAM_ID
    )


def create_lookup_table(authority: Pubkey, payer: Pubkey, recent_slot: int) -> tuple[Instruction, Pubkey]:
    """Returns (instruction, table_address)."""
    table, bump = derive_lookup_table_address(authority, recent_slot)
    data = struct.pack("<IQB", LOOKUP_TABLE_CREATE, recent_slot, bump)
    accounts = [
        _w(table),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        _w(payer, signer=True),
        _r(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data=data, accounts=accounts), table


def extend_lookup_table(
    table: Pubkey,
    authority: Pubkey,
    payer: Pubkey,
    new_addresses: list[Pubkey],
) -> Instruction:
    if not new_addresses:
        raise ValueError("extend_lookup_table needs at least one address")
    data = bytearray(struct.pack("<IQ", LOOKUP_TABLE_EXTEND, len(new_addresses)))
    for address in new_addresses:
        data.extend(bytes(address))
    accounts = [
        _w(table),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        _w(payer, signer=True),
        _r(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data=bytes(data), accounts=accounts)


def deactivate_lookup_table(table: Pubkey, authority: Pubkey) -> Instruction:
    accounts = [
        _w(table),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    data = struct.pack("<I", LOOKUP_TABLE_DEACTIVATE)
    return Instruction(program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data=data, accounts=accounts)


def close_lookup_table(table: Pubkey, authority: Pubkey, recipient: Pubkey) -> Instruction:
    """The table's rent goes to recipient."""
    accounts = [
        _w(table),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        _w(recipient),
    ]
    data = struct.pack("<I", LOOKUP_TABLE_CLOSE)
    return Instruction(program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data=data, accounts=accounts)
