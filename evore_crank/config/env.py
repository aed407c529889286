"""
Environment variable loading for the crank.

- RPC_URL / SOLANA_RPC_URL: JSON-RPC endpoint (RPC_URL wins)
- HELIUS_API_KEY: fallback endpoint when no URL is set
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is evore_crank/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"

_loaded = False


def load_crank_env(path: Path | None = None) -> None:
    """Load .env from project root once. Existing environment variables win."""
    global _loaded
    if _loaded and path is None:
        return
    load_dotenv(path or _ENV_PATH, override=False)
    _loaded = True


def get_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: RPC_URL > SOLANA_RPC_URL > HELIUS_API_KEY > public mainnet.
    """
    load_crank_env()
    for name in ("RPC_URL", "SOLANA_RPC_URL"):
        url = (os.getenv(name) or "").strip()
        if url:
            return url
    key = (os.getenv("HELIUS_API_KEY") or "").strip()
    if key:
        return HELIUS_MAINNET_URL_TEMPLATE.format(key=key)
    return MAINNET_RPC_URL


def mask_rpc_url(url: str) -> str:
    """Hide API keys before logging an endpoint."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url[:48] + "..." if len(url) > 48 else url


def parse_bool_env(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default
