"""
Optional persistence of keeper lifetime counters.

The counters are serialized to JSON, encrypted with Fernet and stored in S3
so they survive restarts. Nothing here feeds back into release decisions.
"""

from .models import KeeperStats

__all__ = ["KeeperStats"]
