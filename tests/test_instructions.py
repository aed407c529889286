"""
Tests for instruction data layouts and account ordering.
"""

from __future__ import annotations

import struct

from solders.keypair import Keypair

from evore_crank.ledger.addresses import derive_deployer_addresses, ore_round_pda
from evore_crank.ledger.constants import FEE_COLLECTOR, SYSTEM_PROGRAM_ID
from evore_crank.ledger.instructions import (
    MAX_COMPUTE_UNITS,
    EvoreInstruction,
    close_lookup_table,
    compute_budget_preamble,
    create_lookup_table,
    deactivate_lookup_table,
    extend_lookup_table,
    mm_autocheckpoint,
    mm_autodeploy,
    recycle_sol,
)

from conftest import PROGRAM_ID


def _addrs():
    return derive_deployer_addresses(PROGRAM_ID, Keypair().pubkey(), 0)


def test_mm_autodeploy_layout():
    signer = Keypair().pubkey()
    addrs = _addrs()
    ix = mm_autodeploy(
        PROGRAM_ID, signer, addrs,
        auth_id=0, round_id=12, amount=10_000, squares_mask=0x1FFFFFF,
        expected_bps_fee=250, expected_flat_fee=1_000,
    )
    data = bytes(ix.data)
    assert len(data) == 49
    assert data[0] == EvoreInstruction.MM_AUTODEPLOY
    assert struct.unpack_from("<Q", data, 1)[0] == 0
    assert data[9] == addrs.auth_bump
    assert data[10] == addrs.deployer_bump
    assert data[11] == addrs.autodeploy_balance_bump
    assert struct.unpack_from("<Q", data, 17)[0] == 10_000
    assert struct.unpack_from("<I", data, 25)[0] == 0x1FFFFFF
    assert struct.unpack_from("<QQ", data, 33) == (250, 1_000)

    keys = [m.pubkey for m in ix.accounts]
    assert len(keys) == 15
    assert keys[0] == signer and ix.accounts[0].is_signer
    assert keys[2] == addrs.deployer
    assert keys[6] == FEE_COLLECTOR
    assert keys[10] == ore_round_pda(12)[0]
    assert keys[14] == SYSTEM_PROGRAM_ID


def test_checkpoint_and_recycle_layouts():
    signer = Keypair().pubkey()
    addrs = _addrs()
    cp = mm_autocheckpoint(PROGRAM_ID, signer, addrs, auth_id=0, round_id=7)
    rc = recycle_sol(PROGRAM_ID, signer, addrs, auth_id=0)
    assert bytes(cp.data)[0] == EvoreInstruction.MM_AUTOCHECKPOINT
    assert bytes(rc.data)[0] == EvoreInstruction.RECYCLE_SOL
    assert len(bytes(cp.data)) == len(bytes(rc.data)) == 10
    assert len(cp.accounts) == 10
    assert cp.accounts[7].pubkey == ore_round_pda(7)[0]
    assert len(rc.accounts) == 8
    assert rc.accounts[3].pubkey == addrs.autodeploy_balance


def test_compute_budget_scales_and_caps():
    limit_ix, _ = compute_budget_preamble(2, 100_000)
    assert struct.unpack_from("<I", bytes(limit_ix.data), 1)[0] == 800_000
    capped, _ = compute_budget_preamble(5, 100_000)
    assert struct.unpack_from("<I", bytes(capped.data), 1)[0] == MAX_COMPUTE_UNITS


def test_lookup_table_instructions():
    authority = Keypair().pubkey()
    create_ix, table = create_lookup_table(authority, authority, 123)
    assert create_ix.accounts[0].pubkey == table
    assert struct.unpack_from("<IQ", bytes(create_ix.data), 0) == (0, 123)

    new = [Keypair().pubkey() for _ in range(3)]
    extend_ix = extend_lookup_table(table, authority, authority, new)
    data = bytes(extend_ix.data)
    assert struct.unpack_from("<IQ", data, 0) == (2, 3)
    assert len(data) == 12 + 32 * 3


def test_lookup_table_retirement_instructions():
    table, authority, recipient = (Keypair().pubkey() for _ in range(3))
    deactivate = deactivate_lookup_table(table, authority)
    assert bytes(deactivate.data) == struct.pack("<I", 3)
    assert [(m.is_signer, m.is_writable) for m in deactivate.accounts] == [(False, True), (True, False)]

    close = close_lookup_table(table, authority, recipient)
    assert bytes(close.data) == struct.pack("<I", 4)
    assert [m.pubkey for m in close.accounts] == [table, authority, recipient]
    assert close.accounts[2].is_writable
