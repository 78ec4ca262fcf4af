import os
import struct
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `ledger.*`, `vault.*`, `keeper.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


def _key(n: int):
    from ledger.keys import Pubkey

    return Pubkey(bytes([n]) * 32)


@pytest.fixture
def key():
    """Deterministic 32-byte address built from a single repeated byte."""
    return _key


@pytest.fixture
def make_record():
    from vault.layout import VaultRecord

    def _make(**overrides):
        fields = dict(
            creator=_key(1),
            beneficiary=_key(2),
            asset_mint=_key(3),
            vault_token_account=_key(4),
            amount_locked=5_000_000,
            unlock_unix=1_000,
            vault_period_seconds=300,
            notification_window_seconds=120,
            grace_period_seconds=120,
            last_checkin_unix=0,
            released=False,
            cancelled=False,
        )
        fields.update(overrides)
        return VaultRecord(**fields)

    return _make


@pytest.fixture
def make_account(make_record):
    from vault.layout import VaultAccount

    def _make(address: int = 9, **overrides):
        return VaultAccount(address=_key(address), record=make_record(**overrides))

    return _make


@pytest.fixture
def vault_bytes():
    """Serialize a VaultRecord into the 237-byte on-chain layout."""
    from vault import layout

    def _encode(record, *, tag: bytes = None) -> bytes:
        buf = bytearray(layout.VAULT_ACCOUNT_SIZE)
        buf[0:8] = layout.VAULT_ACCOUNT_TAG if tag is None else tag
        buf[layout.OFF_CREATOR : layout.OFF_CREATOR + 32] = bytes(record.creator)
        buf[layout.OFF_BENEFICIARY : layout.OFF_BENEFICIARY + 32] = bytes(record.beneficiary)
        buf[layout.OFF_ASSET_MINT : layout.OFF_ASSET_MINT + 32] = bytes(record.asset_mint)
        buf[layout.OFF_VAULT_TOKEN_ACCOUNT : layout.OFF_VAULT_TOKEN_ACCOUNT + 32] = bytes(
            record.vault_token_account
        )
        struct.pack_into("<Q", buf, layout.OFF_AMOUNT_LOCKED, record.amount_locked)
        struct.pack_into("<q", buf, layout.OFF_UNLOCK_UNIX, record.unlock_unix)
        buf[layout.OFF_RELEASED] = 1 if record.released else 0
        buf[layout.OFF_CANCELLED] = 1 if record.cancelled else 0
        struct.pack_into("<Q", buf, layout.OFF_VAULT_ID, record.vault_id)
        buf[layout.OFF_TIER] = record.tier
        struct.pack_into("<I", buf, layout.OFF_NOTIFICATION_WINDOW, record.notification_window_seconds)
        struct.pack_into("<I", buf, layout.OFF_GRACE_PERIOD, record.grace_period_seconds)
        struct.pack_into("<q", buf, layout.OFF_LAST_CHECKIN, record.last_checkin_unix)
        struct.pack_into("<I", buf, layout.OFF_VAULT_PERIOD, record.vault_period_seconds)
        return bytes(buf)

    return _encode
