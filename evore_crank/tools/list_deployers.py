"""
Inspect the deployers this crank serves: balances, required reserve,
owed checkpoints and lookup table coverage.
"""

from __future__ import annotations

from typing import Any

from evore_crank.scheduler.engine import CrankScheduler

LAMPORTS_PER_SOL = 1_000_000_000


def _sol(lamports: int) -> str:
    return f"{lamports / LAMPORTS_PER_SOL:.6f}"


def deployer_rows(scheduler: CrankScheduler) -> list[dict[str, Any]]:
    """One row per discovered deployer, from a single snapshot read."""
    settings = scheduler.settings
    table_loaded = scheduler.lookup_tables.table_address is not None
    rows: list[dict[str, Any]] = []
    for snap in scheduler.snapshot():
        deployer = snap.deployer
        row: dict[str, Any] = {
            "deployer": deployer.key,
            "manager": str(deployer.manager),
            "bps_fee": deployer.bps_fee,
            "flat_fee": deployer.flat_fee,
            "balance": snap.cached_balance,
            "error": snap.error.value if snap.error else None,
        }
        if settings.required_flat_fee is not None:
            row["fee_ok"] = deployer.flat_fee == settings.required_flat_fee
        if snap.error is None:
            req = scheduler.calculator.required_reserve(
                snap, settings.deploy_amount_lamports, settings.squares_mask
            )
            row.update(
                miner_exists=snap.miner_exists,
                checkpoint_round=snap.checkpoint_round,
                required=req.required,
                shortfall=req.shortfall,
                service_fee=req.service_fee,
            )
        if table_loaded:
            row["lut_indexed"] = scheduler.lookup_tables.is_indexed(deployer.addresses.lookup_addresses())
        rows.append(row)
    return rows


def print_deployers(rows: list[dict[str, Any]]) -> None:
    print(f"{len(rows)} deployer(s)")
    for row in rows:
        print(f"\n  {row['deployer']}")
        print(f"    manager:     {row['manager']}")
        print(f"    fees:        {row['bps_fee']} bps + {row['flat_fee']} lamports")
        print(f"    balance:     {_sol(row['balance'])} SOL")
        if row.get("fee_ok") is False:
            print("    fee:         flat fee does not match REQUIRED_FLAT_FEE")
        if row["error"]:
            print(f"    error:       {row['error']}")
            continue
        print(f"    required:    {_sol(row['required'])} SOL (shortfall {_sol(row['shortfall'])})")
        print(f"    miner:       {'exists' if row['miner_exists'] else 'not created'}")
        if row["checkpoint_round"] is not None:
            print(f"    checkpoint:  owed for round {row['checkpoint_round']}")
        if "lut_indexed" in row:
            print(f"    lut:         {'indexed' if row['lut_indexed'] else 'missing'}")
