"""
On-chain constants for the Evore and ORE v3 programs.

Lamport amounts are integers; nothing here is a float.
"""

from __future__ import annotations

from solders.pubkey import Pubkey

ORE_PROGRAM_ID = Pubkey.from_string("oreV3EG1i9BEgiAJ8b177Z2S2rMarzak4NMv1kULvWv")
ENTROPY_PROGRAM_ID = Pubkey.from_string("3jSkUuYBoJzQPMEzTvkDFXCZUBksPamrVhrnHR9igu2X")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
ADDRESS_LOOKUP_TABLE_PROGRAM_ID = Pubkey.from_string("AddressLookupTab1e1111111111111111111111111")
FEE_COLLECTOR = Pubkey.from_string("56qSi79jWdM1zie17NKFvdsh213wPb15HHUqGUjmJ2Lr")
ORE_TREASURY_ADDRESS = Pubkey.from_string("45db2FSR4mcXdSVVZbKbwojU6uYDpMyhpEi7cC8nHaWG")

# Evore PDA seeds
MANAGED_MINER_AUTH_SEED = b"managed-miner-auth"
DEPLOYER_SEED = b"deployer"
AUTODEPLOY_BALANCE_SEED = b"autodeploy-balance"

# ORE PDA seeds
BOARD_SEED = b"board"
MINER_SEED = b"miner"
ROUND_SEED = b"round"
CONFIG_SEED = b"config"
AUTOMATION_SEED = b"automation"
TREASURY_SEED = b"treasury"
ENTROPY_VAR_SEED = b"var"

# Account tags (first byte of the 8-byte discriminator)
EVORE_MANAGER_TAG = 100
EVORE_DEPLOYER_TAG = 101
ORE_MINER_TAG = 103
ORE_BOARD_TAG = 105
ORE_ROUND_TAG = 109

# Fees and rent (lamports)
PROTOCOL_DEPLOY_FEE = 500
ORE_CHECKPOINT_FEE = 10_000
AUTH_PDA_RENT = 890_880  # rent-exempt minimum of a 0-byte account

NUM_SQUARES = 25
SQUARES_MASK_BITS = (1 << NUM_SQUARES) - 1
END_SLOT_UNBOUNDED = 2**64 - 1
