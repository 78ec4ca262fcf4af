from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ledger.keys import Pubkey
from ledger.rpc import LedgerRpcError, SolanaRpcClient
from state.models import KeeperStats
from state.s3_store import S3StatsStore
from vault.eligibility import filter_closable, filter_releasable
from vault.layout import VaultAccount

from .config import ConfigError, KeeperConfig, load_config
from .executor import ReleaseExecutor
from .reports import (
    StartupContext,
    format_batch_summary,
    format_eligible_list,
    format_lifetime_summary,
    format_shutdown_summary,
    format_sol,
    format_startup_banner,
)
from .scanner import scan_vaults


logger = logging.getLogger("keeper")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
ENV_LOG_LEVEL = "LOG_LEVEL"


class KeeperService:
    """
    Periodic scan-and-release loop.

    Each cycle re-reads every vault from the ledger and re-derives eligibility;
    the only state carried across cycles is the lifetime counters in `stats`.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        executor: ReleaseExecutor,
        program_id: Pubkey,
        *,
        poll_interval: float,
        stats: Optional[KeeperStats] = None,
        store: Optional[S3StatsStore] = None,
        etag: Optional[str] = None,
        close_sweep: bool = False,
        commitment: str = "confirmed",
        clock: Callable[[], float] = time.time,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self._rpc = rpc
        self._executor = executor
        self._program_id = program_id
        self._interval = poll_interval
        self.stats = stats if stats is not None else KeeperStats.empty()
        self._store = store
        self._etag = etag
        self._close_sweep = close_sweep
        self._commitment = commitment
        self._clock = clock
        self._stop = stop_event or threading.Event()

    @property
    def stats_location(self) -> str:
        return self._store.location if self._store is not None else ""

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def run_cycle(self) -> Dict[str, Any]:
        now = int(self._clock())
        self.stats.scan_count += 1
        self.stats.last_scan_unix = now
        scan = self.stats.scan_count
        logger.info("Scan #%d starting", scan)

        try:
            vaults = scan_vaults(self._rpc, self._program_id, commitment=self._commitment)
        except Exception as exc:
            logger.error("Scan #%d failed: %s", scan, exc, exc_info=not isinstance(exc, LedgerRpcError))
            logger.info(format_lifetime_summary(self.stats))
            self._persist()
            return {
                "ok": False,
                "scan": scan,
                "scanned": 0,
                "eligible": 0,
                "released": 0,
                "failed": 0,
                "manual_close": [],
                "error": str(exc),
            }

        eligible = filter_releasable(vaults, now)
        released = failed = 0
        manual_close: List[str] = []
        if not eligible:
            logger.info("No vaults eligible for release")
        else:
            logger.info(format_eligible_list(eligible))
            batch = self._executor.release_all(eligible, should_stop=self._stop.is_set)
            released, failed = batch.successful, batch.failed
            manual_close = batch.needs_manual_close
            self.stats.total_released += released
            self.stats.total_failed += failed
            for addr in manual_close:
                self.stats.mark_pending_close(addr)
            logger.info(format_batch_summary(batch))

        # Vaults closed by their creator drop out of the scan
        self.stats.retain_pending_close(
            [str(a.address) for a in filter_closable(vaults)] + manual_close
        )

        closed = 0
        if self._close_sweep and not self._stop.is_set():
            closed = self._sweep(vaults)

        logger.info(format_lifetime_summary(self.stats))
        self._persist()
        result: Dict[str, Any] = {
            "ok": True,
            "scan": scan,
            "scanned": len(vaults),
            "eligible": len(eligible),
            "released": released,
            "failed": failed,
            "manual_close": manual_close,
        }
        if self._close_sweep:
            result["closed"] = closed
        return result

    def _sweep(self, vaults: Sequence[VaultAccount]) -> int:
        closable = filter_closable(vaults)
        if not closable:
            return 0
        logger.info("Close sweep: %d released vault(s) still open", len(closable))
        result = self._executor.close_all(closable, should_stop=self._stop.is_set)
        for outcome in result.outcomes:
            if outcome.closed:
                self.stats.clear_pending_close(outcome.vault)
        logger.info("Close sweep complete: %d closed, %d failed", result.closed, result.failed)
        return result.closed

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            try:
                self._etag = self._store.write(self.stats, if_match=self._etag)
            except Exception:
                self._etag = self._store.write(self.stats)
        except Exception as exc:
            logger.warning("Failed to persist keeper stats to %s: %s", self._store.location, exc)

    def run_forever(self) -> None:
        while not self._stop.is_set():
            self.run_cycle()
            if self._stop.wait(self._interval):
                break


def build_service(cfg: KeeperConfig, rpc: SolanaRpcClient, *, stop_event: Optional[threading.Event] = None) -> KeeperService:
    executor = ReleaseExecutor(
        rpc,
        cfg.keypair,
        cfg.program_id,
        commitment=cfg.commitment,
        confirm_timeout=cfg.confirm_timeout,
        pause_seconds=cfg.release_pause,
    )

    store: Optional[S3StatsStore] = None
    stats: Optional[KeeperStats] = None
    etag: Optional[str] = None
    if cfg.persists_stats:
        store = S3StatsStore(bucket=cfg.state_bucket, key=cfg.state_key, fernet_key=cfg.fernet_key)
        try:
            stats, etag = store.read()
        except Exception as exc:
            logger.warning("Could not load keeper stats from %s, starting fresh: %s", store.location, exc)

    return KeeperService(
        rpc,
        executor,
        cfg.program_id,
        poll_interval=cfg.poll_interval,
        stats=stats,
        store=store,
        etag=etag,
        close_sweep=cfg.close_sweep,
        commitment=cfg.commitment,
        stop_event=stop_event,
    )


def run_once() -> Dict[str, Any]:
    cfg = load_config()
    with SolanaRpcClient(cfg.rpc_url) as rpc:
        return build_service(cfg, rpc).run_cycle()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return run_once()


def _configure_logging() -> None:
    level = (os.environ.get(ENV_LOG_LEVEL) or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="keeper",
        description="Release expired time-locked vaults to their beneficiaries.",
    )
    parser.add_argument("--once", action="store_true", help="run a single scan cycle and exit")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging()

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    stop_event = threading.Event()
    with SolanaRpcClient(cfg.rpc_url) as rpc:
        try:
            balance = rpc.get_balance(cfg.keypair.pubkey, commitment=cfg.commitment)
        except LedgerRpcError as exc:
            logger.error("Cannot reach RPC endpoint %s: %s", cfg.rpc_url, exc)
            return 1
        if balance == 0:
            logger.warning("Keeper has 0 SOL; it cannot pay transaction fees until funded")

        service = build_service(cfg, rpc, stop_event=stop_event)
        logger.info(
            "\n%s",
            format_startup_banner(
                StartupContext(
                    keeper=str(cfg.keypair.pubkey),
                    rpc_url=cfg.rpc_url,
                    program_id=str(cfg.program_id),
                    poll_interval_s=cfg.poll_interval,
                    close_sweep=cfg.close_sweep,
                    stats_location=service.stats_location,
                )
            ),
        )
        logger.info("Keeper balance: %s", format_sol(balance))

        def _handle_signal(signum, frame) -> None:
            logger.info("Received %s, finishing current work", signal.Signals(signum).name)
            service.stop()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        if args.once:
            service.run_cycle()
        else:
            service.run_forever()

    logger.info("\n%s", format_shutdown_summary(service.stats))
    return 0


__all__ = ["KeeperService", "build_service", "lambda_handler", "main", "run_once"]
