"""
Ledger primitives for the vault keeper.

Modules:
- keys: addresses, Ed25519 keypairs, program-derived addresses
- transaction: legacy transaction message compilation and signing
- rpc: JSON-RPC client with rate limiting and retries
- rate_limiter: sliding-window limiter used by the RPC client
"""

__all__ = [
    "keys",
    "rate_limiter",
    "rpc",
    "transaction",
]
