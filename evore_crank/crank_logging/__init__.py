"""
Structured logging for the Evore crank.

JSON logs with timestamp, event_type, deployer_id, round_id.
Use get_logger() in every crank module.
"""

from evore_crank.crank_logging.logger import bind_deployer, get_logger

__all__ = ["bind_deployer", "get_logger"]
