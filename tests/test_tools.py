"""
Tests for operator commands and CLI exit codes.
"""

from __future__ import annotations

import pytest
from solders.keypair import Keypair

from evore_crank.agent_worker import runtime
from evore_crank.core.exceptions import ConfigurationError, LedgerUnavailable, LookupTableStateError
from evore_crank.ledger.constants import AUTH_PDA_RENT, ORE_CHECKPOINT_FEE, PROTOCOL_DEPLOY_FEE
from evore_crank.scheduler.engine import CrankScheduler
from evore_crank.tools import cli
from evore_crank.tools.list_deployers import deployer_rows, print_deployers
from evore_crank.ledger.instructions import LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS
from evore_crank.tools.manage_lut import close_lut, deactivate_lut, extend_lut, show_lut
from evore_crank.tools.self_test import send_test_transaction

FUNDED_AUTH = AUTH_PDA_RENT + ORE_CHECKPOINT_FEE + PROTOCOL_DEPLOY_FEE


def _scheduler(ledger, payer, settings):
    scheduler = CrankScheduler(settings, ledger, payer, sleep=lambda s: None)
    scheduler.discover_deployers()
    return scheduler


def test_deployer_rows(ledger, payer, make_settings, capsys):
    ledger.add_deployer(payer.pubkey(), balance=5_000, auth_balance=FUNDED_AUTH, bps_fee=100)
    settings = make_settings(deploy_amount_lamports=1_000, squares_mask=0b11)
    rows = deployer_rows(_scheduler(ledger, payer, settings))
    assert len(rows) == 1
    row = rows[0]
    assert row["miner_exists"] is False
    assert row["required"] == 2_000 + 4_677_120
    assert row["shortfall"] == row["required"] - 5_000
    assert row["service_fee"] == 20
    print_deployers(rows)
    assert "not created" in capsys.readouterr().out


def test_extend_and_show_lut(ledger, payer, make_settings, capsys):
    ledger.add_deployer(payer.pubkey(), balance=5_000)
    table = Keypair().pubkey()
    ledger.put_lookup_table(table, [])
    scheduler = _scheduler(ledger, payer, make_settings(lut_address=str(table)))
    assert extend_lut(scheduler) == 0
    assert len(ledger.sent) == 1
    shown = show_lut(scheduler)
    assert shown == []
    assert f"Lookup table {table}" in capsys.readouterr().out


def test_deactivate_then_close_lut(ledger, payer, make_settings, capsys):
    table = Keypair().pubkey()
    ledger.put_lookup_table(table, [], authority=payer.pubkey())
    scheduler = _scheduler(ledger, payer, make_settings(lut_address=str(table)))

    signature = deactivate_lut(scheduler)
    assert str(ledger.sent[0].signatures[0]) == signature
    assert "close-lut" in capsys.readouterr().out

    ledger.put_lookup_table(table, [], authority=payer.pubkey(), deactivation_slot=ledger.slot)
    with pytest.raises(LookupTableStateError):
        close_lut(scheduler)
    assert len(ledger.sent) == 1

    ledger.slot += LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS
    signature = close_lut(scheduler)
    assert str(ledger.sent[1].signatures[0]) == signature
    assert "closed" in capsys.readouterr().out


def test_lut_commands_need_address(ledger, payer, settings):
    with pytest.raises(ConfigurationError):
        show_lut(_scheduler(ledger, payer, settings))


def test_self_test_transaction(ledger, payer, settings):
    signature = send_test_transaction(_scheduler(ledger, payer, settings))
    assert str(ledger.sent[0].signatures[0]) == signature


def test_cli_rejects_unknown_command():
    with pytest.raises(SystemExit):
        cli.main(["bogus"])


def test_cli_config_error_exit_code(clean_env, monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://localhost:8899")
    assert cli.main(["list"]) == runtime.EXIT_CONFIG


def test_cli_command_failure_exit_code(monkeypatch):
    def failing(command):
        raise LedgerUnavailable("getProgramAccounts timed out")

    monkeypatch.setattr(cli, "_one_shot", failing)
    assert cli.main(["show-lut"]) == runtime.EXIT_FAILURE


def test_cli_run_delegates_to_runtime(monkeypatch):
    monkeypatch.setattr(runtime, "main", lambda: 0)
    assert cli.main([]) == 0


def test_cli_lookup_table_refusal_exit_code(monkeypatch):
    def refusing(command):
        raise LookupTableStateError("still active; deactivate it first")

    monkeypatch.setattr(cli, "_one_shot", refusing)
    assert cli.main(["close-lut"]) == runtime.EXIT_FAILURE
