"""
Persistent crank loop.

Loads settings and the deploy authority keypair, discovers deployers, loads
the lookup table, then polls until SIGINT/SIGTERM. Per-cycle failures are
logged and the loop continues; only configuration errors are fatal.

Usage: python -m evore_crank.agent_worker.runtime
"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Any

from evore_crank.config.env import mask_rpc_url
from evore_crank.config.settings import CrankSettings, load_keypair
from evore_crank.core.exceptions import ConfigurationError, LedgerUnavailable
from evore_crank.crank_logging import get_logger
from evore_crank.ledger.reader import RpcLedgerReader
from evore_crank.scheduler.engine import CrankScheduler

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_scheduler(settings: CrankSettings) -> tuple[CrankScheduler, RpcLedgerReader]:
    """Keypair + RPC reader + scheduler. Raises ConfigurationError."""
    payer = load_keypair(settings)
    reader = RpcLedgerReader(
        settings.rpc_url,
        timeout_sec=settings.rpc_timeout_sec,
        concurrency=settings.rpc_concurrency,
    )
    return CrankScheduler(settings, reader, payer), reader


def install_signal_handlers(stop: threading.Event) -> None:
    def request_shutdown(signum: int, frame: Any) -> None:
        logger.info("runtime_shutdown_signal", signal=signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, request_shutdown)
        except (AttributeError, ValueError):
            # not the main thread, or unsupported on this platform
            pass


def run_loop(settings: CrankSettings, stop_event: threading.Event | None = None) -> int:
    """Run until stopped. Returns the number of cycles run."""
    stop = stop_event or threading.Event()
    scheduler, reader = build_scheduler(settings)
    logger.info(
        "runtime_worker_started",
        rpc_url=mask_rpc_url(settings.rpc_url),
        authority=str(scheduler.authority),
        program_id=settings.evore_program_id,
        deploy_amount_lamports=settings.deploy_amount_lamports,
        squares_mask=hex(settings.squares_mask),
        priority_fee=settings.priority_fee,
    )
    with reader:
        scheduler.prepare()
        return scheduler.run(stop)


def main() -> int:
    """CLI entrypoint: load config from env and run the crank loop."""
    stop = threading.Event()
    install_signal_handlers(stop)
    try:
        settings = CrankSettings()
        run_loop(settings, stop)
        return EXIT_OK
    except ConfigurationError as e:
        logger.error("runtime_config_invalid", error=str(e))
        return EXIT_CONFIG
    except LedgerUnavailable as e:
        logger.error("runtime_startup_ledger_unavailable", error=str(e))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("runtime_shutdown_signal")
        return EXIT_OK
    except Exception as e:
        logger.exception("runtime_fatal", error=str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
