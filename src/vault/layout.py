from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Union

from ledger.keys import Pubkey


# Current schema: 8-byte account tag + 229 bytes of fields
VAULT_ACCOUNT_SIZE = 237
VAULT_ACCOUNT_TAG = hashlib.sha256(b"account:Vault").digest()[:8]

# Field offsets (little-endian); unlisted bytes hold fields the keeper ignores
OFF_CREATOR = 8
OFF_BENEFICIARY = 40
OFF_ASSET_MINT = 72
OFF_VAULT_TOKEN_ACCOUNT = 104
OFF_AMOUNT_LOCKED = 136
OFF_UNLOCK_UNIX = 144
OFF_RELEASED = 152
OFF_CANCELLED = 153
OFF_VAULT_ID = 174
OFF_TIER = 182
OFF_NOTIFICATION_WINDOW = 200
OFF_GRACE_PERIOD = 204
OFF_LAST_CHECKIN = 208
OFF_VAULT_PERIOD = 233

_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")
_U32 = struct.Struct("<I")


@dataclass(frozen=True)
class VaultRecord:
    """
    Decoded vault account.

    Attributes
    - creator / beneficiary: owner of the vault and recipient of the release
    - asset_mint / vault_token_account: locked asset and the account holding it
    - amount_locked: base units still held by the vault
    - unlock_unix: unlock instant set at creation (ignored once checked in)
    - vault_period_seconds / notification_window_seconds / grace_period_seconds:
      dead-man's-switch timing; well-formed records satisfy
      notification_window_seconds <= vault_period_seconds
    - last_checkin_unix: 0 when the creator never checked in
    - released / cancelled: terminal markers, mutually exclusive
    - vault_id / tier: identifiers with no effect on lifecycle decisions
    """

    creator: Pubkey
    beneficiary: Pubkey
    asset_mint: Pubkey
    vault_token_account: Pubkey
    amount_locked: int
    unlock_unix: int
    vault_period_seconds: int
    notification_window_seconds: int
    grace_period_seconds: int
    last_checkin_unix: int
    released: bool
    cancelled: bool
    vault_id: int = 0
    tier: int = 0


@dataclass(frozen=True)
class SchemaMismatch:
    """Account bytes that do not belong to the current vault schema."""

    size: int
    expected: int
    reason: str


DecodeResult = Union[VaultRecord, SchemaMismatch]


@dataclass(frozen=True)
class VaultAccount:
    """A decoded vault together with its ledger address."""

    address: Pubkey
    record: VaultRecord


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey(data[offset : offset + 32])


def decode_vault(data: bytes) -> DecodeResult:
    """
    Decode a vault account of the current schema.

    Returns SchemaMismatch (never raises) when the length differs from
    VAULT_ACCOUNT_SIZE or the account tag is not the vault tag. Accounts of
    retired schema versions persist on the ledger, so this is routine.
    """
    size = len(data) if data is not None else 0
    if data is None or size != VAULT_ACCOUNT_SIZE:
        return SchemaMismatch(size=size, expected=VAULT_ACCOUNT_SIZE, reason="length")
    raw = bytes(data)
    if raw[:8] != VAULT_ACCOUNT_TAG:
        return SchemaMismatch(size=size, expected=VAULT_ACCOUNT_SIZE, reason="account tag")

    return VaultRecord(
        creator=_pubkey_at(raw, OFF_CREATOR),
        beneficiary=_pubkey_at(raw, OFF_BENEFICIARY),
        asset_mint=_pubkey_at(raw, OFF_ASSET_MINT),
        vault_token_account=_pubkey_at(raw, OFF_VAULT_TOKEN_ACCOUNT),
        amount_locked=_U64.unpack_from(raw, OFF_AMOUNT_LOCKED)[0],
        unlock_unix=_I64.unpack_from(raw, OFF_UNLOCK_UNIX)[0],
        released=raw[OFF_RELEASED] != 0,
        cancelled=raw[OFF_CANCELLED] != 0,
        vault_id=_U64.unpack_from(raw, OFF_VAULT_ID)[0],
        tier=raw[OFF_TIER],
        notification_window_seconds=_U32.unpack_from(raw, OFF_NOTIFICATION_WINDOW)[0],
        grace_period_seconds=_U32.unpack_from(raw, OFF_GRACE_PERIOD)[0],
        last_checkin_unix=_I64.unpack_from(raw, OFF_LAST_CHECKIN)[0],
        vault_period_seconds=_U32.unpack_from(raw, OFF_VAULT_PERIOD)[0],
    )


__all__ = [
    "DecodeResult",
    "SchemaMismatch",
    "VAULT_ACCOUNT_SIZE",
    "VAULT_ACCOUNT_TAG",
    "VaultAccount",
    "VaultRecord",
    "decode_vault",
]
