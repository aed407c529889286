"""
One-shot lookup table commands: create, extend with deployer accounts, show,
and retire (deactivate, then close after the cooldown to reclaim rent).
"""

from __future__ import annotations

from solders.pubkey import Pubkey

from evore_crank.core.exceptions import ConfigurationError
from evore_crank.ledger.instructions import LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS
from evore_crank.scheduler.engine import CrankScheduler


def _configured_table(scheduler: CrankScheduler) -> Pubkey:
    table = scheduler.settings.lut_pubkey
    if table is None:
        raise ConfigurationError("LUT_ADDRESS must be set (run create-lut first)")
    return table


def _require_table(scheduler: CrankScheduler) -> Pubkey:
    table = _configured_table(scheduler)
    scheduler.lookup_tables.load(table)
    return table


def create_lut(scheduler: CrankScheduler) -> Pubkey:
    table = scheduler.lookup_tables.create()
    print(f"Lookup table created: {table}")
    print(f"Add to .env: LUT_ADDRESS={table}")
    return table


def extend_lut(scheduler: CrankScheduler) -> int:
    """Add the shared accounts and every deployer's accounts that the table is missing."""
    table = _require_table(scheduler)
    scheduler.discover_deployers()
    missing = scheduler.lookup_tables.missing_addresses(scheduler.lookup_candidates())
    if not missing:
        print(f"{table}: all {len(scheduler.lookup_tables.known_addresses)} addresses already present")
        return 0
    print(f"{table}: adding {len(missing)} address(es)")
    added = scheduler.lookup_tables.extend(missing)
    remaining = len(missing) - added
    print(f"Added {added}; {remaining} still missing")
    return remaining


def show_lut(scheduler: CrankScheduler) -> list[Pubkey]:
    table = _require_table(scheduler)
    manager = scheduler.lookup_tables
    account = manager.lookup_table_account()
    addresses = list(account.addresses) if account is not None else []
    print(f"Lookup table {table}: {len(addresses)} address(es), capacity ceiling {manager.capacity_ceiling}")
    for i, address in enumerate(addresses):
        print(f"  [{i:3d}] {address}")
    return addresses


def deactivate_lut(scheduler: CrankScheduler) -> str | None:
    table = _configured_table(scheduler)
    signature = scheduler.lookup_tables.deactivate(table)
    if signature is None:
        print(f"{table}: already deactivated")
    else:
        print(f"{table}: deactivated ({signature})")
    print(f"Run close-lut after {LOOKUP_TABLE_DEACTIVATION_COOLDOWN_SLOTS} slots to reclaim the rent")
    return signature


def close_lut(scheduler: CrankScheduler) -> str:
    """Refuses (LookupTableStateError) while the table is active or still cooling down."""
    table = _configured_table(scheduler)
    signature = scheduler.lookup_tables.close(table)
    print(f"{table}: closed ({signature}), rent returned to {scheduler.authority}")
    print("Remove LUT_ADDRESS from .env")
    return signature
