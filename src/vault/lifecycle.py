from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol


class VaultStatus(str, Enum):
    CANCELLED = "cancelled"
    RELEASED = "released"
    LOCKED = "locked"  # before the notification window
    NOTIFICATION = "notification"  # creator is being reminded to check in
    GRACE_PERIOD = "grace_period"  # past unlock; a late check-in still aborts release
    READY_FOR_RELEASE = "ready_for_release"


class VaultTiming(Protocol):
    """Fields the classifier reads; VaultRecord satisfies it."""

    unlock_unix: int
    vault_period_seconds: int
    notification_window_seconds: int
    grace_period_seconds: int
    last_checkin_unix: int
    released: bool
    cancelled: bool


@dataclass(frozen=True)
class VaultStatusInfo:
    """Lifecycle phase of a vault at a given instant.

    Attributes
    - status: current phase
    - time_until_next: seconds until the next phase; None once ready or terminal
    - can_check_in: the creator may check in now (notification and grace period)
    - can_release: release may be triggered now (grace period and later)
    - percent_complete: progress through the vault period, 0-100 (display only)
    - notification_start_unix / grace_end_unix: phase boundaries (0 when terminal)
    """

    status: VaultStatus
    time_until_next: Optional[int]
    can_check_in: bool
    can_release: bool
    percent_complete: float
    notification_start_unix: int
    grace_end_unix: int


def effective_unlock(vault: VaultTiming) -> int:
    """Unlock instant after accounting for the most recent check-in."""
    if vault.last_checkin_unix > 0:
        return vault.last_checkin_unix + vault.vault_period_seconds
    return vault.unlock_unix


def notification_start(vault: VaultTiming) -> int:
    return effective_unlock(vault) - vault.notification_window_seconds


def grace_end(vault: VaultTiming) -> int:
    return effective_unlock(vault) + vault.grace_period_seconds


def _percent_complete(unlock: int, period: int, now: int) -> float:
    if period <= 0:
        return 100.0 if now >= unlock else 0.0
    elapsed = now - (unlock - period)
    return min(100.0, max(0.0, elapsed / period * 100.0))


def classify(vault: VaultTiming, now: int) -> VaultStatusInfo:
    """
    Derive the lifecycle phase of `vault` at unix time `now`.

    Phases use half-open intervals:
      locked            now < notification_start
      notification      notification_start <= now < effective_unlock
      grace_period      effective_unlock <= now < grace_end
      ready_for_release now >= grace_end
    Cancelled and released short-circuit everything else.
    """
    if vault.cancelled:
        return VaultStatusInfo(
            status=VaultStatus.CANCELLED,
            time_until_next=None,
            can_check_in=False,
            can_release=False,
            percent_complete=0.0,
            notification_start_unix=0,
            grace_end_unix=0,
        )
    if vault.released:
        return VaultStatusInfo(
            status=VaultStatus.RELEASED,
            time_until_next=None,
            can_check_in=False,
            can_release=False,
            percent_complete=100.0,
            notification_start_unix=0,
            grace_end_unix=0,
        )

    unlock = effective_unlock(vault)
    start = unlock - vault.notification_window_seconds
    end = unlock + vault.grace_period_seconds

    can_check_in = False
    can_release = False
    time_until_next: Optional[int] = None

    if now < start:
        status = VaultStatus.LOCKED
        time_until_next = start - now
    elif now < unlock:
        status = VaultStatus.NOTIFICATION
        can_check_in = True
        time_until_next = unlock - now
    elif now < end:
        # Must be decided before "ready": at now == end grace is over
        status = VaultStatus.GRACE_PERIOD
        can_check_in = True
        can_release = True
        time_until_next = end - now
    else:
        status = VaultStatus.READY_FOR_RELEASE
        can_release = True

    if status in (VaultStatus.GRACE_PERIOD, VaultStatus.READY_FOR_RELEASE):
        percent = 100.0
    else:
        percent = _percent_complete(unlock, vault.vault_period_seconds, now)

    return VaultStatusInfo(
        status=status,
        time_until_next=time_until_next,
        can_check_in=can_check_in,
        can_release=can_release,
        percent_complete=percent,
        notification_start_unix=start,
        grace_end_unix=end,
    )


_STATUS_TEXT = {
    VaultStatus.LOCKED: "Locked",
    VaultStatus.NOTIFICATION: "Notification Window",
    VaultStatus.GRACE_PERIOD: "Grace Period",
    VaultStatus.READY_FOR_RELEASE: "Ready for Release",
    VaultStatus.RELEASED: "Released",
    VaultStatus.CANCELLED: "Cancelled",
}


def status_text(status: VaultStatus) -> str:
    return _STATUS_TEXT[VaultStatus(status)]


def format_time_remaining(seconds: int) -> str:
    """Compact countdown: "3d 4h", "2h 5m", "7m", "42s"; negative is "Overdue"."""
    if seconds < 0:
        return "Overdue"
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"


__all__ = [
    "VaultStatus",
    "VaultStatusInfo",
    "VaultTiming",
    "classify",
    "effective_unlock",
    "format_time_remaining",
    "grace_end",
    "notification_start",
    "status_text",
]
