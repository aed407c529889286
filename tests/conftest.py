"""
Pytest fixtures for crank tests. FakeLedger is an in-memory LedgerReader with
builders for deployer, board, miner and lookup table account data.
"""

from __future__ import annotations

import struct

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from evore_crank.config.settings import DEFAULT_EVORE_PROGRAM_ID, CrankSettings
from evore_crank.core.exceptions import LedgerUnavailable, SubmitRejected
from evore_crank.ledger.addresses import derive_deployer_addresses, deployer_pda, ore_board_pda
from evore_crank.ledger.constants import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    END_SLOT_UNBOUNDED,
    EVORE_DEPLOYER_TAG,
    ORE_BOARD_TAG,
    ORE_MINER_TAG,
    ORE_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
)
from evore_crank.ledger.reader import AccountSnapshot, MemcmpFilter

PROGRAM_ID = Pubkey.from_string(DEFAULT_EVORE_PROGRAM_ID)

CRANK_ENV_VARS = (
    "RPC_URL",
    "SOLANA_RPC_URL",
    "HELIUS_API_KEY",
    "DEPLOY_AUTHORITY_KEYPAIR",
    "DEPLOY_AUTHORITY_PRIVATE_KEY",
    "EVORE_PROGRAM_ID",
    "PRIORITY_FEE",
    "POLL_INTERVAL_MS",
    "DEPLOY_AMOUNT_LAMPORTS",
    "SQUARES_MASK",
    "AUTH_ID",
    "DEPLOY_SLOTS_BEFORE_END",
    "MIN_SLOTS_TO_DEPLOY",
    "INTERMISSION_SLOTS",
    "LUT_ADDRESS",
    "AUTO_EXTEND_LUT",
    "RPC_TIMEOUT_SEC",
    "RPC_CONCURRENCY",
    "DRY_RUN",
    "CONFIRM_TIMEOUT_SEC",
    "REQUIRED_FLAT_FEE",
)


def _header(tag: int) -> bytes:
    return bytes([tag, 0, 0, 0, 0, 0, 0, 0])


class FakeLedger:
    """
    LedgerReader backed by a dict. Sent transactions are decoded and kept in
    `sent`; their status is `default_status` unless overridden in `statuses`.
    """

    def __init__(self) -> None:
        self.slot = 1_000
        self.accounts: dict[Pubkey, AccountSnapshot] = {}
        self.sent: list[VersionedTransaction] = []
        self.statuses: dict[str, bool | None] = {}
        self.default_status: bool | None = True
        self.unavailable = False
        self.reject_sends = 0
        self.blockhash = Hash.new_unique()
        self.get_accounts_calls = 0

    # --- record builders -------------------------------------------------

    @staticmethod
    def deployer_data(
        manager: Pubkey,
        authority: Pubkey,
        bps_fee: int = 0,
        flat_fee: int = 0,
    ) -> bytes:
        return (
            _header(EVORE_DEPLOYER_TAG)
            + bytes(manager)
            + bytes(authority)
            + struct.pack("<QQQQ", bps_fee, flat_fee, bps_fee, flat_fee)
        )

    @staticmethod
    def board_data(round_id: int, start_slot: int, end_slot: int, epoch_id: int = 0) -> bytes:
        return _header(ORE_BOARD_TAG) + struct.pack("<QQQQ", round_id, start_slot, end_slot, epoch_id)

    @staticmethod
    def miner_data(
        authority: Pubkey,
        *,
        checkpoint_id: int = 0,
        round_id: int = 0,
        rewards_sol: int = 0,
        deployed: list[int] | None = None,
    ) -> bytes:
        deployed = deployed or [0] * 25
        data = bytearray(_header(ORE_MINER_TAG))
        data += bytes(authority)
        data += struct.pack("<25Q", *deployed)
        data += struct.pack("<25Q", *([0] * 25))
        data += struct.pack("<QQqq", 10_000, checkpoint_id, 0, 0)
        data += bytes(16)  # rewards_factor
        data += struct.pack("<QQQQ", rewards_sol, 0, 0, round_id)
        data += struct.pack("<QQQ", 0, 0, sum(deployed))
        return bytes(data)

    @staticmethod
    def lookup_table_data(
        addresses: list[Pubkey],
        authority: Pubkey | None = None,
        deactivation_slot: int = 2**64 - 1,
    ) -> bytes:
        meta = bytearray(56)
        struct.pack_into("<IQQ", meta, 0, 1, deactivation_slot, 0)
        if authority is not None:
            meta[21] = 1
            meta[22:54] = bytes(authority)
        return bytes(meta) + b"".join(bytes(a) for a in addresses)

    # --- state helpers ---------------------------------------------------

    def put(self, address: Pubkey, data: bytes = b"", lamports: int = 0, owner: Pubkey = SYSTEM_PROGRAM_ID) -> None:
        self.accounts[address] = AccountSnapshot(address=address, lamports=lamports, data=data, owner=owner)

    def set_board(self, round_id: int, end_slot: int = END_SLOT_UNBOUNDED, start_slot: int = 0) -> None:
        self.put(ore_board_pda()[0], self.board_data(round_id, start_slot, end_slot), 1, ORE_PROGRAM_ID)

    def add_deployer(
        self,
        authority: Pubkey,
        *,
        balance: int = 0,
        auth_balance: int = 0,
        bps_fee: int = 0,
        flat_fee: int = 0,
        miner: dict | None = None,
        auth_id: int = 0,
        manager: Pubkey | None = None,
    ) -> Pubkey:
        """Create a deployer with its balance account and (optionally) its ORE miner. Returns the deployer address."""
        manager = manager or Keypair().pubkey()
        deployer = deployer_pda(PROGRAM_ID, manager)[0]
        self.put(deployer, self.deployer_data(manager, authority, bps_fee, flat_fee), 1_500_000, PROGRAM_ID)
        addrs = derive_deployer_addresses(PROGRAM_ID, manager, auth_id)
        self.put(addrs.autodeploy_balance, b"", balance)
        if auth_balance:
            self.put(addrs.managed_miner_auth, b"", auth_balance)
        if miner is not None:
            self.put(addrs.ore_miner, self.miner_data(addrs.managed_miner_auth, **miner), 4_677_120, ORE_PROGRAM_ID)
        return deployer

    def put_lookup_table(
        self,
        address: Pubkey,
        addresses: list[Pubkey],
        *,
        authority: Pubkey | None = None,
        deactivation_slot: int = 2**64 - 1,
    ) -> None:
        data = self.lookup_table_data(addresses, authority, deactivation_slot)
        self.put(address, data, 1, ADDRESS_LOOKUP_TABLE_PROGRAM_ID)

    # --- LedgerReader ----------------------------------------------------

    def _check(self) -> None:
        if self.unavailable:
            raise LedgerUnavailable("fake ledger offline")

    def get_slot(self) -> int:
        self._check()
        return self.slot

    def get_account(self, address: Pubkey) -> AccountSnapshot | None:
        self._check()
        return self.accounts.get(address)

    def get_accounts(self, addresses):
        self._check()
        self.get_accounts_calls += 1
        return [self.accounts.get(a) for a in addresses]

    def get_program_accounts(self, program_id: Pubkey, filters: list[MemcmpFilter]):
        self._check()
        out = []
        for account in self.accounts.values():
            if account.owner != program_id:
                continue
            if all(account.data[f.offset : f.offset + len(f.data)] == f.data for f in filters):
                out.append(account)
        return out

    def get_latest_blockhash(self) -> Hash:
        self._check()
        return self.blockhash

    def submit_transaction(self, raw: bytes) -> str:
        self._check()
        if self.reject_sends:
            self.reject_sends -= 1
            raise SubmitRejected("Transaction simulation failed", code=-32002, logs=["Program log: stale"])
        tx = VersionedTransaction.from_bytes(raw)
        self.sent.append(tx)
        return str(tx.signatures[0])

    def confirm_transaction(self, signature: str) -> bool | None:
        self._check()
        return self.statuses.get(signature, self.default_status)


class LostReplyLedger(FakeLedger):
    """
    Accepts every send but the first `lost` replies time out. Each blockhash
    request returns a new hash, as a live cluster does between calls.
    """

    def __init__(self, lost: int) -> None:
        super().__init__()
        self.lost = lost

    def get_latest_blockhash(self) -> Hash:
        self._check()
        return Hash.new_unique()

    def submit_transaction(self, raw: bytes) -> str:
        signature = super().submit_transaction(raw)
        if self.lost:
            self.lost -= 1
            raise LedgerUnavailable("read timed out")
        return signature


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove crank env vars so settings come only from explicit arguments."""
    for name in CRANK_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def make_settings(clean_env, payer):
    """Factory for CrankSettings signed by the `payer` fixture."""

    def _make(**overrides) -> CrankSettings:
        values = {
            "rpc_url": "http://localhost:8899",
            "private_key": base58.b58encode(bytes(payer)).decode("ascii"),
            "keypair_path": "",
            "lut_address": "",
            "auto_extend_lut": True,
            "dry_run": False,
            "poll_interval_ms": 400,
        }
        values.update(overrides)
        return CrankSettings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> CrankSettings:
    return make_settings()


def make_deployer(bps_fee: int = 0, flat_fee: int = 0, authority: Pubkey | None = None):
    """A Deployer with freshly derived addresses, no ledger needed."""
    from evore_crank.scheduler.models import Deployer

    manager = Keypair().pubkey()
    deployer = deployer_pda(PROGRAM_ID, manager)[0]
    return Deployer(
        address=deployer,
        manager=manager,
        deploy_authority=authority or Keypair().pubkey(),
        bps_fee=bps_fee,
        flat_fee=flat_fee,
        addresses=derive_deployer_addresses(PROGRAM_ID, manager, 0),
    )
