from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

from ledger.keys import Keypair, Pubkey
from ledger.rpc import LedgerApiError, LedgerRpcError, SolanaRpcClient
from ledger.transaction import Instruction, compile_message, sign_transaction
from vault.eligibility import EligibleVault
from vault.instructions import CloseInstructionParams, ReleaseInstructionParams
from vault.layout import VaultAccount
from vault.program_errors import describe_program_error

from .reports import format_amount, short_address


logger = logging.getLogger("keeper.executor")

VaultLike = Union[EligibleVault, VaultAccount]


def _as_account(vault: VaultLike) -> VaultAccount:
    return vault.account if isinstance(vault, EligibleVault) else vault


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, LedgerApiError):
        program_error = describe_program_error(exc.custom_code)
        if program_error:
            return f"{exc} [{program_error}]"
    return str(exc) or exc.__class__.__name__


@dataclass(frozen=True)
class CloseOutcome:
    vault: str
    closed: bool
    signature: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ReleaseOutcome:
    """
    Result of the two-phase release of one vault.

    `released` alone decides success: once the release confirmed the funds
    have moved, so a failed close is reported through `needs_manual_close`
    and must never lead to another release attempt.
    """

    vault: str
    released: bool
    closed: bool = False
    release_signature: Optional[str] = None
    close_signature: Optional[str] = None
    error: Optional[str] = None
    close_error: Optional[str] = None
    program_error: Optional[int] = None

    @property
    def needs_manual_close(self) -> bool:
        return self.released and not self.closed


@dataclass
class BatchResult:
    successful: int = 0
    failed: int = 0
    outcomes: List[ReleaseOutcome] = field(default_factory=list)

    @property
    def needs_manual_close(self) -> List[str]:
        return [o.vault for o in self.outcomes if o.needs_manual_close]

    def add(self, outcome: ReleaseOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.released:
            self.successful += 1
        else:
            self.failed += 1


@dataclass
class CloseBatchResult:
    closed: int = 0
    failed: int = 0
    outcomes: List[CloseOutcome] = field(default_factory=list)


class ReleaseExecutor:
    """
    Builds, signs and submits release and close transactions for the keeper.

    - Every vault is handled on its own; failures are logged and returned as
      outcomes, never raised.
    - Close is attempted only after the release confirmed.
    - Consecutive vaults are separated by `pause_seconds` to stay under the
      endpoint's rate limits.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        keeper: Keypair,
        program_id: Pubkey,
        *,
        commitment: str = "confirmed",
        confirm_timeout: float = 60.0,
        pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._rpc = rpc
        self._keeper = keeper
        self._program_id = program_id
        self._commitment = commitment
        self._confirm_timeout = confirm_timeout
        self._pause = max(0.0, pause_seconds)
        self._sleep = sleep

    # --------------- Builders ---------------
    def build_release(self, vault: VaultLike) -> Instruction:
        account = _as_account(vault)
        params = ReleaseInstructionParams.for_vault(account, self._keeper.pubkey, self._program_id)
        return params.to_instruction(self._program_id)

    def build_close(self, vault: VaultLike) -> Instruction:
        params = CloseInstructionParams.for_vault(_as_account(vault), self._keeper.pubkey)
        return params.to_instruction(self._program_id)

    # --------------- Submission ---------------
    def submit(self, instruction: Instruction) -> str:
        """Sign with the keeper, send with preflight, and wait for confirmation."""
        latest = self._rpc.get_latest_blockhash(commitment=self._commitment)
        message = compile_message([instruction], self._keeper.pubkey, latest.blockhash)
        tx = sign_transaction(message, [self._keeper])
        signature = self._rpc.send_transaction(
            tx.serialize(), preflight_commitment=self._commitment
        )
        self._rpc.confirm_transaction(
            signature,
            commitment=self._commitment,
            last_valid_block_height=latest.last_valid_block_height,
            timeout=self._confirm_timeout,
        )
        return signature

    def close(self, vault: VaultLike) -> CloseOutcome:
        account = _as_account(vault)
        addr = str(account.address)
        try:
            signature = self.submit(self.build_close(account))
        except LedgerRpcError as exc:
            reason = _describe_failure(exc)
            logger.warning("Close failed for vault %s: %s", addr, reason)
            return CloseOutcome(vault=addr, closed=False, error=reason)
        except Exception as exc:
            logger.exception("Unexpected error closing vault %s", addr)
            return CloseOutcome(vault=addr, closed=False, error=_describe_failure(exc))

        logger.info(
            "Close successful for %s; rent reclaimed to %s (tx %s)",
            short_address(addr),
            short_address(account.record.creator),
            signature,
        )
        return CloseOutcome(vault=addr, closed=True, signature=signature)

    def release(self, vault: VaultLike) -> ReleaseOutcome:
        """Release funds to the beneficiary, then close the vault to reclaim rent."""
        account = _as_account(vault)
        addr = str(account.address)
        record = account.record
        logger.info("Releasing vault %s", addr)

        try:
            release_sig = self.submit(self.build_release(account))
        except LedgerRpcError as exc:
            reason = _describe_failure(exc)
            logger.error("Release failed for vault %s: %s", addr, reason)
            code = exc.custom_code if isinstance(exc, LedgerApiError) else None
            return ReleaseOutcome(vault=addr, released=False, error=reason, program_error=code)
        except Exception as exc:
            logger.exception("Unexpected error releasing vault %s", addr)
            return ReleaseOutcome(vault=addr, released=False, error=_describe_failure(exc))

        logger.info(
            "Release successful for %s: %s to %s (tx %s)",
            short_address(addr),
            format_amount(record.amount_locked),
            short_address(record.beneficiary),
            release_sig,
        )

        closing = self.close(account)
        if not closing.closed:
            logger.warning(
                "Vault %s released but close failed; creator %s can close it manually to reclaim rent",
                addr,
                record.creator,
            )
        return ReleaseOutcome(
            vault=addr,
            released=True,
            closed=closing.closed,
            release_signature=release_sig,
            close_signature=closing.signature,
            close_error=closing.error,
        )

    # --------------- Batches ---------------
    def release_all(
        self,
        vaults: Sequence[VaultLike],
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> BatchResult:
        batch = BatchResult()
        for i, vault in enumerate(vaults):
            if should_stop is not None and should_stop():
                logger.info("Stop requested; %d vault(s) left for the next run", len(vaults) - i)
                break
            if i > 0 and self._pause:
                self._sleep(self._pause)
            batch.add(self.release(vault))
        return batch

    def close_all(
        self,
        accounts: Sequence[VaultLike],
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> CloseBatchResult:
        result = CloseBatchResult()
        for i, account in enumerate(accounts):
            if should_stop is not None and should_stop():
                break
            if i > 0 and self._pause:
                self._sleep(self._pause)
            outcome = self.close(account)
            result.outcomes.append(outcome)
            if outcome.closed:
                result.closed += 1
            else:
                result.failed += 1
        return result


__all__ = [
    "BatchResult",
    "CloseBatchResult",
    "CloseOutcome",
    "ReleaseExecutor",
    "ReleaseOutcome",
]
