"""
CrankSettings: every tunable of the crank, read from env with defaults.

Env (all optional except one of the key variables):
    RPC_URL, DEPLOY_AUTHORITY_KEYPAIR (JSON keypair file), DEPLOY_AUTHORITY_PRIVATE_KEY
    (base58 or JSON array), EVORE_PROGRAM_ID, PRIORITY_FEE, POLL_INTERVAL_MS,
    DEPLOY_AMOUNT_LAMPORTS, SQUARES_MASK, AUTH_ID, DEPLOY_SLOTS_BEFORE_END,
    MIN_SLOTS_TO_DEPLOY, INTERMISSION_SLOTS, LUT_ADDRESS, AUTO_EXTEND_LUT,
    RPC_TIMEOUT_SEC, RPC_CONCURRENCY, DRY_RUN, REQUIRED_FLAT_FEE.

Invalid values raise ConfigurationError; the process exits at startup.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from evore_crank.config.env import get_rpc_url, load_crank_env, parse_bool_env
from evore_crank.core.exceptions import ConfigurationError

DEFAULT_EVORE_PROGRAM_ID = "8jaLKWLJAj5jVCZbxpe3zRUvLB3LD48MRtaQ2AjfCfxa"
DEFAULT_PRIORITY_FEE = 100_000
DEFAULT_POLL_INTERVAL_MS = 400
DEFAULT_DEPLOY_AMOUNT_LAMPORTS = 10_000
ALL_SQUARES_MASK = 0x1FFFFFF
DEFAULT_AUTH_ID = 0
DEFAULT_DEPLOY_SLOTS_BEFORE_END = 150
DEFAULT_MIN_SLOTS_TO_DEPLOY = 10
DEFAULT_INTERMISSION_SLOTS = 35
DEFAULT_RPC_TIMEOUT_SEC = 10.0
DEFAULT_RPC_CONCURRENCY = 4
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SEC = 0.5
DEFAULT_CONFIRM_TIMEOUT_SEC = 30.0
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
MIN_POLL_INTERVAL_MS = 50


def _env_str(name: str, default: str = "") -> str:
    load_crank_env()
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        # base 0 accepts 0x-prefixed masks
        return int(raw.replace("_", ""), 0)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_optional_int(name: str) -> int | None:
    """Unset or empty means no value (the check it drives is disabled)."""
    if not _env_str(name):
        return None
    return _env_int(name, 0)


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _parse_pubkey(name: str, value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} is not a valid public key: {value!r}") from e


@dataclass
class CrankSettings:
    """Crank configuration (env or explicit)."""

    rpc_url: str = field(default_factory=get_rpc_url)
    keypair_path: str = field(default_factory=lambda: _env_str("DEPLOY_AUTHORITY_KEYPAIR"))
    private_key: str = field(default_factory=lambda: _env_str("DEPLOY_AUTHORITY_PRIVATE_KEY"))
    evore_program_id: str = field(default_factory=lambda: _env_str("EVORE_PROGRAM_ID", DEFAULT_EVORE_PROGRAM_ID))
    priority_fee: int = field(default_factory=lambda: _env_int("PRIORITY_FEE", DEFAULT_PRIORITY_FEE))
    poll_interval_ms: int = field(default_factory=lambda: _env_int("POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS))
    deploy_amount_lamports: int = field(default_factory=lambda: _env_int("DEPLOY_AMOUNT_LAMPORTS", DEFAULT_DEPLOY_AMOUNT_LAMPORTS))
    squares_mask: int = field(default_factory=lambda: _env_int("SQUARES_MASK", ALL_SQUARES_MASK))
    auth_id: int = field(default_factory=lambda: _env_int("AUTH_ID", DEFAULT_AUTH_ID))
    deploy_slots_before_end: int = field(default_factory=lambda: _env_int("DEPLOY_SLOTS_BEFORE_END", DEFAULT_DEPLOY_SLOTS_BEFORE_END))
    min_slots_to_deploy: int = field(default_factory=lambda: _env_int("MIN_SLOTS_TO_DEPLOY", DEFAULT_MIN_SLOTS_TO_DEPLOY))
    intermission_slots: int = field(default_factory=lambda: _env_int("INTERMISSION_SLOTS", DEFAULT_INTERMISSION_SLOTS))
    lut_address: str = field(default_factory=lambda: _env_str("LUT_ADDRESS"))
    auto_extend_lut: bool = field(default_factory=lambda: parse_bool_env("AUTO_EXTEND_LUT", True))
    rpc_timeout_sec: float = field(default_factory=lambda: _env_float("RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC))
    rpc_concurrency: int = field(default_factory=lambda: _env_int("RPC_CONCURRENCY", DEFAULT_RPC_CONCURRENCY))
    dry_run: bool = field(default_factory=lambda: parse_bool_env("DRY_RUN", False))
    required_flat_fee: int | None = field(default_factory=lambda: _env_optional_int("REQUIRED_FLAT_FEE"))
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_backoff_sec: float = DEFAULT_RETRY_BACKOFF_SEC
    confirm_timeout_sec: float = field(default_factory=lambda: _env_float("CONFIRM_TIMEOUT_SEC", DEFAULT_CONFIRM_TIMEOUT_SEC))
    confirm_poll_interval_sec: float = DEFAULT_CONFIRM_POLL_INTERVAL_SEC

    def __post_init__(self) -> None:
        if not self.rpc_url:
            raise ConfigurationError("RPC_URL must be set")
        if not self.keypair_path and not self.private_key:
            raise ConfigurationError(
                "DEPLOY_AUTHORITY_KEYPAIR or DEPLOY_AUTHORITY_PRIVATE_KEY must be set"
            )
        _parse_pubkey("EVORE_PROGRAM_ID", self.evore_program_id)
        if self.lut_address:
            _parse_pubkey("LUT_ADDRESS", self.lut_address)
        if self.deploy_amount_lamports <= 0:
            raise ConfigurationError("DEPLOY_AMOUNT_LAMPORTS must be positive")
        if self.squares_mask <= 0 or self.squares_mask > ALL_SQUARES_MASK:
            raise ConfigurationError(
                f"SQUARES_MASK must select 1..25 squares (0x1..0x{ALL_SQUARES_MASK:X})"
            )
        if self.auth_id < 0:
            raise ConfigurationError("AUTH_ID must be non-negative")
        if self.priority_fee < 0:
            raise ConfigurationError("PRIORITY_FEE must be non-negative")
        if self.required_flat_fee is not None and self.required_flat_fee < 0:
            raise ConfigurationError("REQUIRED_FLAT_FEE must be non-negative")
        if self.min_slots_to_deploy < 0 or self.min_slots_to_deploy > self.deploy_slots_before_end:
            raise ConfigurationError(
                "MIN_SLOTS_TO_DEPLOY must be between 0 and DEPLOY_SLOTS_BEFORE_END"
            )
        if self.intermission_slots < 0:
            raise ConfigurationError("INTERMISSION_SLOTS must be non-negative")
        if self.rpc_timeout_sec <= 0:
            raise ConfigurationError("RPC_TIMEOUT_SEC must be positive")
        self.poll_interval_ms = max(MIN_POLL_INTERVAL_MS, int(self.poll_interval_ms))
        self.rpc_concurrency = max(1, int(self.rpc_concurrency))
        self.retry_attempts = max(1, int(self.retry_attempts))

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def program_id(self) -> Pubkey:
        return Pubkey.from_string(self.evore_program_id)

    @property
    def lut_pubkey(self) -> Pubkey | None:
        return Pubkey.from_string(self.lut_address) if self.lut_address else None


def _keypair_from_secret(raw: str) -> Keypair:
    """Base58 string or JSON array of 64 bytes."""
    raw = raw.strip()
    if raw.startswith("["):
        arr = json.loads(raw)
        return Keypair.from_bytes(bytes(arr[:64]))
    return Keypair.from_bytes(base58.b58decode(raw))


def load_keypair(settings: CrankSettings) -> Keypair:
    """Load the deploy authority keypair from the keypair file or the inline secret."""
    if settings.keypair_path:
        path = Path(settings.keypair_path).expanduser()
        try:
            return _keypair_from_secret(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(f"cannot read keypair file {path}: {e}") from e
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid keypair file {path}: {e}") from e
    try:
        return _keypair_from_secret(settings.private_key)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        raise ConfigurationError("invalid DEPLOY_AUTHORITY_PRIVATE_KEY") from e
