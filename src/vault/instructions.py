from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict

from ledger.keys import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    Pubkey,
    find_program_address,
    get_associated_token_address,
)
from ledger.transaction import AccountMeta, Instruction

from .layout import VaultAccount


DEFAULT_PROGRAM_ID = "74v7NZh7A6SH9DmKZRC4tFUwaLvq19KfD1NGni62XQJK"
VAULT_COUNTER_SEED = b"vault_counter"


def _compute_tag(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("ascii")).digest()[:8]


# Built once; every instruction build reads from here
INSTRUCTION_TAGS: Dict[str, bytes] = {
    name: _compute_tag(name) for name in ("release", "close_vault", "cancel_vault")
}


def instruction_tag(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), memoised per operation name."""
    tag = INSTRUCTION_TAGS.get(name)
    if tag is None:
        tag = INSTRUCTION_TAGS.setdefault(name, _compute_tag(name))
    return tag


def vault_counter_address(creator: Pubkey, program_id: Pubkey) -> Pubkey:
    address, _ = find_program_address([VAULT_COUNTER_SEED, creator], program_id)
    return address


@dataclass(frozen=True)
class ReleaseInstructionParams:
    """Accounts of the `release` instruction, in program order."""

    vault: Pubkey
    counter: Pubkey
    vault_token_account: Pubkey
    asset_mint: Pubkey
    beneficiary_token_account: Pubkey
    beneficiary: Pubkey
    payer: Pubkey

    @classmethod
    def for_vault(cls, account: VaultAccount, payer: Pubkey, program_id: Pubkey) -> "ReleaseInstructionParams":
        rec = account.record
        return cls(
            vault=account.address,
            counter=vault_counter_address(rec.creator, program_id),
            vault_token_account=rec.vault_token_account,
            asset_mint=rec.asset_mint,
            beneficiary_token_account=get_associated_token_address(rec.beneficiary, rec.asset_mint),
            beneficiary=rec.beneficiary,
            payer=payer,
        )

    def to_instruction(self, program_id: Pubkey) -> Instruction:
        accounts = (
            AccountMeta(self.vault, is_signer=False, is_writable=True),
            AccountMeta(self.counter, is_signer=False, is_writable=False),
            AccountMeta(self.vault_token_account, is_signer=False, is_writable=True),
            AccountMeta(self.asset_mint, is_signer=False, is_writable=False),
            AccountMeta(self.beneficiary_token_account, is_signer=False, is_writable=True),
            AccountMeta(self.beneficiary, is_signer=False, is_writable=False),
            AccountMeta(self.payer, is_signer=True, is_writable=True),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        )
        return Instruction(program_id=program_id, accounts=accounts, data=instruction_tag("release"))


@dataclass(frozen=True)
class CloseInstructionParams:
    """Accounts of the `close_vault` instruction; rent returns to the creator."""

    vault: Pubkey
    vault_token_account: Pubkey
    creator: Pubkey
    signer: Pubkey

    @classmethod
    def for_vault(cls, account: VaultAccount, signer: Pubkey) -> "CloseInstructionParams":
        return cls(
            vault=account.address,
            vault_token_account=account.record.vault_token_account,
            creator=account.record.creator,
            signer=signer,
        )

    def to_instruction(self, program_id: Pubkey) -> Instruction:
        accounts = (
            AccountMeta(self.vault, is_signer=False, is_writable=True),
            AccountMeta(self.vault_token_account, is_signer=False, is_writable=True),
            AccountMeta(self.creator, is_signer=False, is_writable=True),
            AccountMeta(self.signer, is_signer=True, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        )
        return Instruction(program_id=program_id, accounts=accounts, data=instruction_tag("close_vault"))


__all__ = [
    "CloseInstructionParams",
    "DEFAULT_PROGRAM_ID",
    "INSTRUCTION_TAGS",
    "ReleaseInstructionParams",
    "instruction_tag",
    "vault_counter_address",
]
