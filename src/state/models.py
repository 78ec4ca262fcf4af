from __future__ import annotations

from typing import Iterable, List, Optional

from pydantic import BaseModel, Field


class KeeperStats(BaseModel):
    """
    Lifetime counters of a keeper deployment, optionally persisted between runs.

    Fields
    - total_released: vaults whose release confirmed (including partial successes)
    - total_failed: release attempts that did not confirm
    - scan_count: cycles started, successful or not
    - pending_close: vault addresses released by this keeper whose close failed;
      the creator (or a later close sweep) still has to reclaim their rent
    - last_scan_unix: start time of the most recent cycle

    Notes
    - Telemetry only. Release decisions are re-derived from the ledger scan
      every cycle and never read this model.
    """

    total_released: int = Field(default=0, ge=0)
    total_failed: int = Field(default=0, ge=0)
    scan_count: int = Field(default=0, ge=0)
    pending_close: List[str] = Field(default_factory=list)
    last_scan_unix: Optional[int] = None

    @classmethod
    def empty(cls) -> "KeeperStats":
        return cls()

    def mark_pending_close(self, address: str) -> None:
        if address not in self.pending_close:
            self.pending_close.append(address)

    def clear_pending_close(self, address: str) -> None:
        self.pending_close = [a for a in self.pending_close if a != address]

    def retain_pending_close(self, addresses: Iterable[str]) -> None:
        keep = set(addresses)
        self.pending_close = [a for a in self.pending_close if a in keep]
