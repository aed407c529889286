"""
Main entrypoint: Evore autodeploy crank.

Runs the crank loop by default; operator commands (list, test, create-lut,
extend-lut, show-lut) are dispatched by evore_crank.tools.cli.

Env: RPC_URL, DEPLOY_AUTHORITY_KEYPAIR, LUT_ADDRESS, PRIORITY_FEE, POLL_INTERVAL_MS, etc.
"""

import sys

# Configure structured JSON logging before other imports that may log
from evore_crank.crank_logging import get_logger
from evore_crank.tools.cli import main as cli_main

logger = get_logger("main")


def main() -> int:
    return cli_main(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
