"""
Tests for fixed-layout record decoding and PDA derivation.
"""

from __future__ import annotations

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from evore_crank.core.exceptions import DecodeError
from evore_crank.ledger.addresses import (
    derive_deployer_addresses,
    deployer_pda,
    ore_board_pda,
    ore_round_pda,
    shared_static_addresses,
)
from evore_crank.ledger.codec import (
    MINER_LEN,
    decode_board,
    decode_deployer,
    decode_lookup_table,
    decode_miner,
    rent_exempt_minimum,
)
from evore_crank.ledger.constants import AUTH_PDA_RENT, END_SLOT_UNBOUNDED, ORE_PROGRAM_ID

from conftest import PROGRAM_ID, FakeLedger


def test_decode_deployer_fields():
    manager, authority = Keypair().pubkey(), Keypair().pubkey()
    rec = decode_deployer(FakeLedger.deployer_data(manager, authority, bps_fee=250, flat_fee=1_000))
    assert rec.manager == manager
    assert rec.deploy_authority == authority
    assert rec.bps_fee == 250
    assert rec.flat_fee == 1_000
    assert rec.expected_bps_fee == 250


def test_decode_deployer_short_legacy_layout():
    """Deployers that only carry bps_fee decode with zero flat fee."""
    data = FakeLedger.deployer_data(Keypair().pubkey(), Keypair().pubkey(), bps_fee=100)[:80]
    rec = decode_deployer(data)
    assert rec.bps_fee == 100
    assert rec.flat_fee == 0


def test_decode_board():
    rec = decode_board(FakeLedger.board_data(42, 100, 250, epoch_id=7))
    assert (rec.round_id, rec.start_slot, rec.end_slot, rec.epoch_id) == (42, 100, 250, 7)


def test_decode_board_unbounded_end():
    assert decode_board(FakeLedger.board_data(1, 0, END_SLOT_UNBOUNDED)).end_slot == END_SLOT_UNBOUNDED


def test_decode_miner_checkpoint_owed():
    authority = Keypair().pubkey()
    deployed = [0] * 25
    deployed[3] = 5_000
    data = FakeLedger.miner_data(authority, checkpoint_id=9, round_id=10, rewards_sol=77, deployed=deployed)
    assert len(data) == MINER_LEN
    rec = decode_miner(data)
    assert rec.authority == authority
    assert rec.deployed[3] == 5_000
    assert rec.checkpoint_id == 9
    assert rec.round_id == 10
    assert rec.rewards_sol == 77
    assert rec.lifetime_deployed == 5_000
    assert rec.checkpoint_owed is True


def test_decode_miner_up_to_date():
    rec = decode_miner(FakeLedger.miner_data(Keypair().pubkey(), checkpoint_id=10, round_id=10))
    assert rec.checkpoint_owed is False


@pytest.mark.parametrize(
    "decoder,data",
    [
        (decode_board, None),
        (decode_board, b"\x69" + bytes(10)),
        (decode_board, FakeLedger.deployer_data(Pubkey.default(), Pubkey.default())),
        (decode_miner, FakeLedger.board_data(1, 2, 3)),
        (decode_deployer, bytes(104)),
    ],
)
def test_decode_rejects_bad_records(decoder, data):
    """Missing, short or wrongly tagged accounts raise DecodeError."""
    with pytest.raises(DecodeError):
        decoder(data)


def test_decode_lookup_table():
    addrs = [Keypair().pubkey() for _ in range(3)]
    authority = Keypair().pubkey()
    rec = decode_lookup_table(FakeLedger.lookup_table_data(addrs, authority))
    assert list(rec.addresses) == addrs
    assert rec.authority == authority
    assert rec.is_active


def test_decode_lookup_table_misaligned():
    with pytest.raises(DecodeError):
        decode_lookup_table(FakeLedger.lookup_table_data([]) + b"\x01")


def test_rent_exempt_minimum():
    assert rent_exempt_minimum(0) == AUTH_PDA_RENT
    assert rent_exempt_minimum(MINER_LEN) == 4_677_120


def test_deployer_addresses_are_consistent():
    manager = Keypair().pubkey()
    addrs = derive_deployer_addresses(PROGRAM_ID, manager, 0)
    assert addrs.deployer == deployer_pda(PROGRAM_ID, manager)[0]
    assert addrs.manager == manager
    assert len(set(addrs.lookup_addresses())) == 6
    assert derive_deployer_addresses(PROGRAM_ID, manager, 1).managed_miner_auth != addrs.managed_miner_auth


def test_shared_addresses_exclude_round_accounts():
    shared = shared_static_addresses(PROGRAM_ID)
    assert ore_board_pda()[0] in shared
    assert ORE_PROGRAM_ID in shared
    assert ore_round_pda(5)[0] not in shared
