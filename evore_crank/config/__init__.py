"""Configuration: .env loading and CrankSettings."""

from evore_crank.config.env import get_rpc_url, load_crank_env
from evore_crank.config.settings import CrankSettings, load_keypair

__all__ = ["CrankSettings", "get_rpc_url", "load_crank_env", "load_keypair"]
