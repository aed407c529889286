"""
Operator CLI.

    evore-crank run             start the crank loop (default)
    evore-crank list            deployers, balances, required reserve
    evore-crank test            send a 0-lamport self transfer
    evore-crank create-lut      create an address lookup table
    evore-crank extend-lut      add deployer accounts to LUT_ADDRESS
    evore-crank show-lut        print LUT_ADDRESS contents
    evore-crank deactivate-lut  deactivate LUT_ADDRESS (starts the close cooldown)
    evore-crank close-lut       close a deactivated LUT_ADDRESS and reclaim its rent

All settings come from env / .env (see evore_crank.config.settings).
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from evore_crank.agent_worker import runtime
from evore_crank.config.settings import CrankSettings
from evore_crank.core.exceptions import ConfigurationError, CrankError
from evore_crank.crank_logging import get_logger
from evore_crank.tools.list_deployers import deployer_rows, print_deployers
from evore_crank.tools.manage_lut import close_lut, create_lut, deactivate_lut, extend_lut, show_lut
from evore_crank.tools.self_test import send_test_transaction

logger = get_logger(__name__)

COMMANDS = ("run", "list", "test", "create-lut", "extend-lut", "show-lut", "deactivate-lut", "close-lut")


def _one_shot(command: str) -> int:
    settings = CrankSettings()
    scheduler, reader = runtime.build_scheduler(settings)
    with reader:
        if command == "list":
            scheduler.discover_deployers()
            if settings.lut_pubkey is not None:
                scheduler.lookup_tables.load(settings.lut_pubkey)
            print_deployers(deployer_rows(scheduler))
            return runtime.EXIT_OK
        if command == "test":
            signature = send_test_transaction(scheduler)
            print(f"Test transaction confirmed: {signature}")
            return runtime.EXIT_OK
        if command == "create-lut":
            create_lut(scheduler)
            return runtime.EXIT_OK
        if command == "extend-lut":
            remaining = extend_lut(scheduler)
            return runtime.EXIT_OK if remaining == 0 else runtime.EXIT_FAILURE
        if command == "deactivate-lut":
            deactivate_lut(scheduler)
            return runtime.EXIT_OK
        if command == "close-lut":
            close_lut(scheduler)
            return runtime.EXIT_OK
        show_lut(scheduler)
        return runtime.EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="evore-crank",
        description="Evore autodeploy crank: deploys funded deployers into each ORE round.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=COMMANDS,
        help="Command to run (default: run)",
    )
    args = parser.parse_args(argv)
    if args.command == "run":
        return runtime.main()
    try:
        return _one_shot(args.command)
    except ConfigurationError as e:
        logger.error("cli_config_invalid", command=args.command, error=str(e))
        print(f"Configuration error: {e}", file=sys.stderr)
        return runtime.EXIT_CONFIG
    except CrankError as e:
        logger.error("cli_command_failed", command=args.command, error=str(e))
        print(f"{args.command} failed: {e}", file=sys.stderr)
        return runtime.EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
