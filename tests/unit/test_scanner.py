from __future__ import annotations

import logging

import pytest

from keeper.scanner import scan_vaults
from ledger.keys import Pubkey
from ledger.rpc import LedgerRpcError, ProgramAccount
from vault.layout import VAULT_ACCOUNT_SIZE


PROGRAM = Pubkey(b"\x0f" * 32)


class _FakeRpc:
    def __init__(self, accounts=None, error: Exception = None) -> None:
        self.accounts = accounts or []
        self.error = error
        self.calls = []

    def get_program_accounts(self, program_id, *, data_size=None, commitment="confirmed"):
        self.calls.append((program_id, data_size, commitment))
        if self.error is not None:
            raise self.error
        return self.accounts


def test_scan_decodes_current_schema_and_drops_the_rest(make_record, vault_bytes, key, caplog):
    good = make_record(amount_locked=7)
    accounts = [
        ProgramAccount(pubkey=str(key(20)), data=vault_bytes(good)),
        ProgramAccount(pubkey=str(key(21)), data=vault_bytes(good, tag=b"\x01" * 8)),  # other account type
        ProgramAccount(pubkey=str(key(22)), data=vault_bytes(good)[:200]),  # retired schema
        ProgramAccount(pubkey="not-an-address", data=vault_bytes(good)),
    ]
    rpc = _FakeRpc(accounts)

    with caplog.at_level(logging.DEBUG, logger="keeper.scanner"):
        vaults = scan_vaults(rpc, PROGRAM, commitment="finalized")

    assert [v.address for v in vaults] == [key(20)]
    assert vaults[0].record == good
    assert rpc.calls == [(PROGRAM, VAULT_ACCOUNT_SIZE, "finalized")]

    skipped = [r for r in caplog.records if r.levelno == logging.DEBUG]
    assert len(skipped) == 3
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_scan_propagates_rpc_errors():
    rpc = _FakeRpc(error=LedgerRpcError("getProgramAccounts failed after 4 attempts"))
    with pytest.raises(LedgerRpcError):
        scan_vaults(rpc, PROGRAM)


def test_scan_of_empty_program():
    assert scan_vaults(_FakeRpc([]), PROGRAM) == []
