"""
Keeper process: scan the vault program, release expired vaults, reclaim rent.

Modules:
- config: environment (and optional SSM) configuration
- scanner: full scan of current-schema vault accounts
- executor: two-phase release-then-close submission
- handler: poll loop, CLI entry point and scheduled handler
- reports: plain-text log formatting
"""

__all__ = [
    "config",
    "executor",
    "handler",
    "reports",
    "scanner",
]
