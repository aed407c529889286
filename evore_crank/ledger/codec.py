"""
Fixed-layout record decoding for Evore deployers, ORE boards and miners, and
address lookup tables.

Every record starts with an 8-byte discriminator whose first byte is the
account tag. All integers are little-endian. Each decode_* function returns a
frozen dataclass or raises DecodeError; nothing is decoded by duck typing.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from solders.pubkey import Pubkey

from evore_crank.core.exceptions import DecodeError
from evore_crank.ledger.constants import (
    EVORE_DEPLOYER_TAG,
    NUM_SQUARES,
    ORE_BOARD_TAG,
    ORE_MINER_TAG,
)

DISCRIMINATOR_LEN = 8
PUBKEY_LEN = 32
U64 = struct.Struct("<Q")

# Deployer: 8 disc + manager 32 + deploy_authority 32 + bps_fee + flat_fee + expected_bps_fee + expected_flat_fee
DEPLOYER_MANAGER_OFFSET = 8
DEPLOYER_AUTHORITY_OFFSET = 40
DEPLOYER_BPS_FEE_OFFSET = 72
DEPLOYER_FLAT_FEE_OFFSET = 80
DEPLOYER_EXPECTED_BPS_FEE_OFFSET = 88
DEPLOYER_EXPECTED_FLAT_FEE_OFFSET = 96
DEPLOYER_MIN_LEN = DEPLOYER_BPS_FEE_OFFSET + 8  # 80: older deployers carry only bps_fee
DEPLOYER_LEN = DEPLOYER_EXPECTED_FLAT_FEE_OFFSET + 8  # 104

# Board: 8 disc + round_id + start_slot + end_slot + epoch_id
BOARD_ROUND_ID_OFFSET = 8
BOARD_START_SLOT_OFFSET = 16
BOARD_END_SLOT_OFFSET = 24
BOARD_EPOCH_ID_OFFSET = 32
BOARD_MIN_LEN = BOARD_END_SLOT_OFFSET + 8  # 32
BOARD_LEN = BOARD_EPOCH_ID_OFFSET + 8  # 40

# Miner: 8 disc + authority 32 + deployed[25] + cumulative[25] + scalars
MINER_AUTHORITY_OFFSET = 8
MINER_DEPLOYED_OFFSET = 40
MINER_CUMULATIVE_OFFSET = MINER_DEPLOYED_OFFSET + NUM_SQUARES * 8  # 240
MINER_CHECKPOINT_FEE_OFFSET = MINER_CUMULATIVE_OFFSET + NUM_SQUARES * 8  # 440
MINER_CHECKPOINT_ID_OFFSET = 448
MINER_LAST_CLAIM_ORE_AT_OFFSET = 456
MINER_LAST_CLAIM_SOL_AT_OFFSET = 464
MINER_REWARDS_FACTOR_OFFSET = 472  # 16-byte fixed-point, not decoded
MINER_REWARDS_SOL_OFFSET = 488
MINER_REWARDS_ORE_OFFSET = 496
MINER_REFINED_ORE_OFFSET = 504
MINER_ROUND_ID_OFFSET = 512
MINER_LIFETIME_REWARDS_SOL_OFFSET = 520
MINER_LIFETIME_REWARDS_ORE_OFFSET = 528
MINER_LIFETIME_DEPLOYED_OFFSET = 536
MINER_MIN_LEN = MINER_ROUND_ID_OFFSET + 8  # 520
MINER_LEN = MINER_LIFETIME_DEPLOYED_OFFSET + 8  # 544

# Address lookup table: 56-byte meta, then packed 32-byte addresses
LOOKUP_TABLE_META_LEN = 56
LOOKUP_TABLE_TYPE_OFFSET = 0  # u32, 1 = initialized table
LOOKUP_TABLE_DEACTIVATION_SLOT_OFFSET = 4
LOOKUP_TABLE_LAST_EXTENDED_SLOT_OFFSET = 12
LOOKUP_TABLE_AUTHORITY_OPTION_OFFSET = 21
LOOKUP_TABLE_AUTHORITY_OFFSET = 22
LOOKUP_TABLE_INITIALIZED = 1

# Solana rent: (ACCOUNT_STORAGE_OVERHEAD + len) * lamports_per_byte_year * exemption_years
ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE_YEAR = 3480
EXEMPTION_THRESHOLD_YEARS = 2


def rent_exempt_minimum(data_len: int) -> int:
    return (ACCOUNT_STORAGE_OVERHEAD + data_len) * LAMPORTS_PER_BYTE_YEAR * EXEMPTION_THRESHOLD_YEARS


def _u64_at(data: bytes, offset: int) -> int:
    return U64.unpack_from(data, offset)[0]


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset : offset + PUBKEY_LEN])


def _check(record: str, data: bytes | None, tag: int, min_len: int) -> bytes:
    if data is None:
        raise DecodeError(record, "account missing")
    if len(data) < min_len:
        raise DecodeError(record, f"expected at least {min_len} bytes, got {len(data)}")
    if data[0] != tag:
        raise DecodeError(record, f"unexpected account tag {data[0]} (want {tag})")
    return bytes(data)


@dataclass(frozen=True)
class DeployerRecord:
    manager: Pubkey
    deploy_authority: Pubkey
    bps_fee: int
    flat_fee: int
    expected_bps_fee: int
    expected_flat_fee: int


@dataclass(frozen=True)
class BoardRecord:
    round_id: int
    start_slot: int
    end_slot: int
    epoch_id: int


@dataclass(frozen=True)
class MinerRecord:
    authority: Pubkey
    deployed: tuple[int, ...]
    cumulative: tuple[int, ...]
    checkpoint_fee: int
    checkpoint_id: int
    rewards_sol: int
    rewards_ore: int
    refined_ore: int
    round_id: int
    lifetime_deployed: int

    @property
    def checkpoint_owed(self) -> bool:
        """A past round has not been checkpointed yet."""
        return self.checkpoint_id < self.round_id


@dataclass(frozen=True)
class LookupTableRecord:
    deactivation_slot: int
    last_extended_slot: int
    authority: Pubkey | None
    addresses: tuple[Pubkey, ...]

    @property
    def is_active(self) -> bool:
        return self.deactivation_slot == 2**64 - 1


def decode_deployer(data: bytes | None) -> DeployerRecord:
    raw = _check("deployer", data, EVORE_DEPLOYER_TAG, DEPLOYER_MIN_LEN)
    flat_fee = _u64_at(raw, DEPLOYER_FLAT_FEE_OFFSET) if len(raw) >= DEPLOYER_FLAT_FEE_OFFSET + 8 else 0
    full = len(raw) >= DEPLOYER_LEN
    return DeployerRecord(
        manager=_pubkey_at(raw, DEPLOYER_MANAGER_OFFSET),
        deploy_authority=_pubkey_at(raw, DEPLOYER_AUTHORITY_OFFSET),
        bps_fee=_u64_at(raw, DEPLOYER_BPS_FEE_OFFSET),
        flat_fee=flat_fee,
        expected_bps_fee=_u64_at(raw, DEPLOYER_EXPECTED_BPS_FEE_OFFSET) if full else 0,
        expected_flat_fee=_u64_at(raw, DEPLOYER_EXPECTED_FLAT_FEE_OFFSET) if full else 0,
    )


def decode_board(data: bytes | None) -> BoardRecord:
    raw = _check("board", data, ORE_BOARD_TAG, BOARD_MIN_LEN)
    return BoardRecord(
        round_id=_u64_at(raw, BOARD_ROUND_ID_OFFSET),
        start_slot=_u64_at(raw, BOARD_START_SLOT_OFFSET),
        end_slot=_u64_at(raw, BOARD_END_SLOT_OFFSET),
        epoch_id=_u64_at(raw, BOARD_EPOCH_ID_OFFSET) if len(raw) >= BOARD_LEN else 0,
    )


def decode_miner(data: bytes | None) -> MinerRecord:
    raw = _check("miner", data, ORE_MINER_TAG, MINER_MIN_LEN)
    deployed = struct.unpack_from(f"<{NUM_SQUARES}Q", raw, MINER_DEPLOYED_OFFSET)
    cumulative = struct.unpack_from(f"<{NUM_SQUARES}Q", raw, MINER_CUMULATIVE_OFFSET)
    return MinerRecord(
        authority=_pubkey_at(raw, MINER_AUTHORITY_OFFSET),
        deployed=deployed,
        cumulative=cumulative,
        checkpoint_fee=_u64_at(raw, MINER_CHECKPOINT_FEE_OFFSET),
        checkpoint_id=_u64_at(raw, MINER_CHECKPOINT_ID_OFFSET),
        rewards_sol=_u64_at(raw, MINER_REWARDS_SOL_OFFSET),
        rewards_ore=_u64_at(raw, MINER_REWARDS_ORE_OFFSET),
        refined_ore=_u64_at(raw, MINER_REFINED_ORE_OFFSET),
        round_id=_u64_at(raw, MINER_ROUND_ID_OFFSET),
        lifetime_deployed=_u64_at(raw, MINER_LIFETIME_DEPLOYED_OFFSET) if len(raw) >= MINER_LEN else 0,
    )


def decode_lookup_table(data: bytes | None) -> LookupTableRecord:
    if data is None:
        raise DecodeError("lookup_table", "account missing")
    raw = bytes(data)
    if len(raw) < LOOKUP_TABLE_META_LEN:
        raise DecodeError("lookup_table", f"expected at least {LOOKUP_TABLE_META_LEN} bytes, got {len(raw)}")
    kind = struct.unpack_from("<I", raw, LOOKUP_TABLE_TYPE_OFFSET)[0]
    if kind != LOOKUP_TABLE_INITIALIZED:
        raise DecodeError("lookup_table", f"table not initialized (type {kind})")
    body = raw[LOOKUP_TABLE_META_LEN:]
    if len(body) % PUBKEY_LEN:
        raise DecodeError("lookup_table", f"address area of {len(body)} bytes is not a multiple of 32")
    authority = None
    if raw[LOOKUP_TABLE_AUTHORITY_OPTION_OFFSET]:
        authority = _pubkey_at(raw, LOOKUP_TABLE_AUTHORITY_OFFSET)
    addresses = tuple(
        Pubkey.from_bytes(body[i : i + PUBKEY_LEN]) for i in range(0, len(body), PUBKEY_LEN)
    )
    return LookupTableRecord(
        deactivation_slot=_u64_at(raw, LOOKUP_TABLE_DEACTIVATION_SLOT_OFFSET),
        last_extended_slot=_u64_at(raw, LOOKUP_TABLE_LAST_EXTENDED_SLOT_OFFSET),
        authority=authority,
        addresses=addresses,
    )
