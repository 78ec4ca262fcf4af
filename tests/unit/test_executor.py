from __future__ import annotations

from typing import List, Optional, Set, Tuple

import base58
import pytest

from keeper.executor import ReleaseExecutor
from ledger.keys import SIGNATURE_LENGTH, Keypair, Pubkey, get_associated_token_address
from ledger.rpc import ConfirmationTimeout, LatestBlockhash, LedgerApiError
from vault.eligibility import filter_releasable
from vault.instructions import instruction_tag
from vault.program_errors import ALREADY_RELEASED


PROGRAM = Pubkey(b"\x0f" * 32)
BLOCKHASH = base58.b58encode(b"\x07" * 32).decode()


class FakeLedger:
    """
    In-memory stand-in for SolanaRpcClient.

    The submitted operation is recognised by the instruction tag in the wire
    bytes; the vault by its address. Released vaults reject a second release
    the way the program does.
    """

    def __init__(self) -> None:
        self.released: Set[bytes] = set()
        self.closed: Set[bytes] = set()
        self.fail_release: Set[bytes] = set()
        self.fail_close: Set[bytes] = set()
        self.timeout_on: Optional[str] = None
        self.sent: List[Tuple[str, bytes]] = []
        self._n = 0

    def get_latest_blockhash(self, *, commitment: str = "confirmed") -> LatestBlockhash:
        return LatestBlockhash(blockhash=BLOCKHASH, last_valid_block_height=100)

    def send_transaction(self, wire: bytes, *, skip_preflight: bool = False, preflight_commitment: str = "confirmed") -> str:
        self._n += 1
        # skip the signature block: compact-u16 count (1) + 64-byte signature
        message = wire[1 + SIGNATURE_LENGTH :]
        vault = message[4 + 32 : 4 + 64]  # first non-payer key is the vault (writable non-signer)
        if instruction_tag("release") in message:
            op = "release"
            if vault in self.released:
                raise LedgerApiError(
                    "Transaction simulation failed: custom program error: 0x1772",
                    code=-32002,
                    data={"err": {"InstructionError": [0, {"Custom": ALREADY_RELEASED}]}},
                )
            if vault in self.fail_release:
                raise LedgerApiError("Transaction simulation failed: insufficient funds", code=-32002)
            self.released.add(vault)
        elif instruction_tag("close_vault") in message:
            op = "close"
            if vault in self.fail_close:
                raise LedgerApiError("Transaction simulation failed: account in use", code=-32002)
            self.closed.add(vault)
        else:
            raise AssertionError("unexpected instruction")
        self.sent.append((op, vault))
        return f"sig{self._n}"

    def confirm_transaction(self, signature: str, *, commitment: str, last_valid_block_height: int, timeout: float):
        if self.timeout_on == signature:
            raise ConfirmationTimeout(f"Transaction {signature} not confirmed within {timeout:.0f}s")
        return None


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def keeper() -> Keypair:
    return Keypair.generate()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def executor(ledger, keeper, sleeps):
    return ReleaseExecutor(ledger, keeper, PROGRAM, pause_seconds=1.0, sleep=sleeps.append)


def test_release_then_close(executor, ledger, make_account):
    account = make_account(9)
    outcome = executor.release(account)

    assert outcome.released is True
    assert outcome.closed is True
    assert outcome.needs_manual_close is False
    assert outcome.release_signature == "sig1"
    assert outcome.close_signature == "sig2"
    assert [op for op, _ in ledger.sent] == ["release", "close"]
    assert all(v == account.address.raw for _, v in ledger.sent)


def test_close_failure_is_partial_success(executor, ledger, make_account):
    account = make_account(9)
    ledger.fail_close.add(account.address.raw)

    batch = executor.release_all([account])

    assert batch.successful == 1
    assert batch.failed == 0
    assert batch.needs_manual_close == [str(account.address)]
    (outcome,) = batch.outcomes
    assert outcome.released is True
    assert outcome.closed is False
    assert "account in use" in outcome.close_error


def test_close_failure_logs_manual_close_reminder(executor, ledger, make_account, caplog):
    account = make_account(9)
    ledger.fail_close.add(account.address.raw)
    with caplog.at_level("WARNING", logger="keeper.executor"):
        executor.release(account)
    assert any("close it manually" in r.getMessage() for r in caplog.records)


def test_release_failure_never_attempts_close(executor, ledger, make_account):
    account = make_account(9)
    ledger.fail_release.add(account.address.raw)

    batch = executor.release_all([account])

    assert batch.successful == 0
    assert batch.failed == 1
    assert batch.needs_manual_close == []
    assert ledger.sent == []
    assert batch.outcomes[0].closed is False


def test_confirmation_timeout_counts_as_failure(executor, ledger, make_account):
    ledger.timeout_on = "sig1"
    outcome = executor.release(make_account(9))
    assert outcome.released is False
    assert "not confirmed" in outcome.error
    assert [op for op, _ in ledger.sent] == ["release"]


def test_second_release_is_rejected_by_ledger(executor, ledger, make_account):
    account = make_account(9)

    first = executor.release_all([account])
    second = executor.release_all([account])

    assert (first.successful, first.failed) == (1, 0)
    assert (second.successful, second.failed) == (0, 1)
    outcome = second.outcomes[0]
    assert outcome.program_error == ALREADY_RELEASED
    assert "AlreadyReleased" in outcome.error
    assert [op for op, _ in ledger.sent] == ["release", "close"]


def test_unexpected_exception_is_contained(ledger, keeper, make_account):
    class Boom(FakeLedger):
        def get_latest_blockhash(self, *, commitment: str = "confirmed"):
            raise KeyError("value")

    ex = ReleaseExecutor(Boom(), keeper, PROGRAM, sleep=lambda s: None)
    outcome = ex.release(make_account(9))
    assert outcome.released is False
    assert outcome.error


def test_batch_isolates_vaults_and_pauses_between_them(executor, ledger, sleeps, make_account):
    a, b, c = make_account(9), make_account(10), make_account(11)
    ledger.fail_release.add(b.address.raw)

    batch = executor.release_all([a, b, c])

    assert (batch.successful, batch.failed) == (2, 1)
    assert sleeps == [1.0, 1.0]
    assert ledger.released == {a.address.raw, c.address.raw}


def test_stop_flag_is_checked_between_vaults(executor, ledger, make_account):
    accounts = [make_account(9), make_account(10), make_account(11)]

    def should_stop() -> bool:
        return len(ledger.released) >= 1

    batch = executor.release_all(accounts, should_stop=should_stop)
    assert len(batch.outcomes) == 1
    assert ledger.released == {accounts[0].address.raw}


def test_close_all_counts(executor, ledger, make_account):
    a, b = make_account(9, released=True, amount_locked=0), make_account(10, released=True, amount_locked=0)
    ledger.fail_close.add(b.address.raw)

    result = executor.close_all([a, b])

    assert (result.closed, result.failed) == (1, 1)
    assert [op for op, _ in ledger.sent] == ["close"]


def test_end_to_end_at_exact_grace_end(executor, ledger, keeper, make_account, key):
    t0 = 1_700_000_000
    # created at t0 with no check-in; unlock = t0 + period
    account = make_account(
        9,
        unlock_unix=t0 + 300,
        vault_period_seconds=300,
        notification_window_seconds=120,
        grace_period_seconds=120,
        last_checkin_unix=0,
    )
    now = t0 + 300 + 120

    eligible = filter_releasable([account], now)
    assert [e.address for e in eligible] == [account.address]
    assert eligible[0].overdue_seconds == 0

    release_ix = executor.build_release(eligible[0])
    close_ix = executor.build_close(eligible[0])
    beneficiary_ata = get_associated_token_address(key(2), key(3))
    assert release_ix.accounts[4].pubkey == beneficiary_ata
    assert release_ix.accounts[6].pubkey == keeper.pubkey
    assert close_ix.accounts[2].pubkey == key(1)
    assert close_ix.accounts[3].pubkey == keeper.pubkey

    batch = executor.release_all(eligible)
    assert (batch.successful, batch.failed) == (1, 0)
    assert [op for op, _ in ledger.sent] == ["release", "close"]
