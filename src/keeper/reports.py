from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from vault.eligibility import EligibleVault
from vault.lifecycle import format_time_remaining

if TYPE_CHECKING:
    from state.models import KeeperStats

    from .executor import BatchResult


ASSET_DECIMALS = 6
LAMPORTS_PER_SOL = 1_000_000_000


def short_address(address: object, chars: int = 4) -> str:
    s = str(address)
    if len(s) <= chars * 2:
        return s
    return f"{s[:chars]}...{s[-chars:]}"


def format_amount(base_units: int, *, decimals: int = ASSET_DECIMALS) -> str:
    """Base units as a decimal string with 2-6 fractional digits (e.g. "12.50")."""
    whole, frac = divmod(int(base_units), 10**decimals)
    frac_str = f"{frac:0{decimals}d}".rstrip("0")
    if len(frac_str) < 2:
        frac_str = frac_str.ljust(2, "0")
    return f"{whole:,}.{frac_str}"


def format_sol(lamports: int) -> str:
    return f"{lamports / LAMPORTS_PER_SOL:.4f} SOL"


@dataclass(frozen=True)
class StartupContext:
    keeper: str
    rpc_url: str
    program_id: str
    poll_interval_s: float
    close_sweep: bool
    stats_location: str = ""


def format_startup_banner(ctx: StartupContext) -> str:
    lines = [
        "=== Vault Keeper ===",
        f"Keeper Address:  {ctx.keeper}",
        f"RPC Endpoint:    {ctx.rpc_url}",
        f"Program:         {ctx.program_id}",
        f"Poll Interval:   {ctx.poll_interval_s:g}s",
        f"Close Sweep:     {'on' if ctx.close_sweep else 'off'}",
    ]
    if ctx.stats_location:
        lines.append(f"Stats Store:     {ctx.stats_location}")
    return "\n".join(lines)


def format_eligible_line(vault: EligibleVault) -> str:
    return (
        f"  - {short_address(vault.address)} | Amount: {format_amount(vault.record.amount_locked)}"
        f" | Overdue: {vault.overdue_seconds}s ({format_time_remaining(vault.overdue_seconds)})"
    )


def format_eligible_list(vaults: List[EligibleVault]) -> str:
    header = f"Found {len(vaults)} vault(s) eligible for release"
    return "\n".join([header, *(format_eligible_line(v) for v in vaults)])


def format_batch_summary(batch: "BatchResult") -> str:
    msg = f"Batch complete: {batch.successful} successful, {batch.failed} failed"
    pending = batch.needs_manual_close
    if pending:
        msg += f" ({len(pending)} released but still open: {', '.join(short_address(a) for a in pending)})"
    return msg


def format_lifetime_summary(stats: "KeeperStats") -> str:
    return f"Total lifetime: {stats.total_released} successful, {stats.total_failed} failed"


def format_shutdown_summary(stats: "KeeperStats") -> str:
    lines = [
        "=== Keeper Shutting Down ===",
        f"Total Scans:     {stats.scan_count}",
        f"Total Releases:  {stats.total_released}",
        f"Total Failures:  {stats.total_failed}",
    ]
    if stats.pending_close:
        lines.append(f"Pending Close:   {len(stats.pending_close)}")
    return "\n".join(lines)


__all__ = [
    "StartupContext",
    "format_amount",
    "format_batch_summary",
    "format_eligible_line",
    "format_eligible_list",
    "format_lifetime_summary",
    "format_shutdown_summary",
    "format_sol",
    "format_startup_banner",
    "short_address",
]
