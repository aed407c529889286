"""Ledger access: address derivation, record codecs, instruction builders and the RPC reader."""
