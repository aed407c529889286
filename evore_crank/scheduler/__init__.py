"""
Crank scheduler: round monitoring, admission, batching and submission.

CrankScheduler (engine) wires the components together; each component is
usable on its own with any LedgerReader.
"""

from evore_crank.scheduler.engine import CrankScheduler, CycleSummary

__all__ = ["CrankScheduler", "CycleSummary"]
