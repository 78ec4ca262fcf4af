from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .layout import VaultAccount, VaultRecord
from .lifecycle import grace_end


@dataclass(frozen=True)
class EligibleVault:
    """A vault past its grace period, with timing kept for log lines."""

    account: VaultAccount
    grace_end: int
    overdue_seconds: int

    @property
    def address(self):
        return self.account.address

    @property
    def record(self) -> VaultRecord:
        return self.account.record


def is_releasable(record: VaultRecord, now: int) -> bool:
    if record.released or record.cancelled:
        return False
    if record.amount_locked <= 0:
        return False
    return now >= grace_end(record)


def filter_releasable(accounts: Iterable[VaultAccount], now: int) -> List[EligibleVault]:
    """Vaults the keeper should release at `now`. Order carries no meaning."""
    out: List[EligibleVault] = []
    for acct in accounts:
        if not is_releasable(acct.record, now):
            continue
        end = grace_end(acct.record)
        out.append(EligibleVault(account=acct, grace_end=end, overdue_seconds=now - end))
    return out


def filter_closable(accounts: Iterable[VaultAccount]) -> List[VaultAccount]:
    """Released vaults with nothing left locked whose accounts were never closed."""
    return [
        a
        for a in accounts
        if a.record.released and not a.record.cancelled and a.record.amount_locked == 0
    ]


__all__ = [
    "EligibleVault",
    "filter_closable",
    "filter_releasable",
    "is_releasable",
]
