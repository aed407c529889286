"""
Evore autodeploy crank: scheduler that admits funded deployers into the current
ORE round, batches their autodeploy instructions and submits them to Solana.
"""

__version__ = "0.1.0"
