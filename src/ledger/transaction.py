from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import base58

from .keys import SIGNATURE_LENGTH, Keypair, Pubkey


@dataclass(frozen=True)
class AccountMeta:
    pubkey: Pubkey
    is_signer: bool
    is_writable: bool


@dataclass(frozen=True)
class Instruction:
    program_id: Pubkey
    accounts: Tuple[AccountMeta, ...]
    data: bytes


@dataclass(frozen=True)
class CompiledInstruction:
    program_id_index: int
    account_indexes: Tuple[int, ...]
    data: bytes


@dataclass(frozen=True)
class MessageHeader:
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int


def encode_compact_u16(value: int) -> bytes:
    """Encode a length as the ledger's ShortVec (1-3 bytes, 7 bits per byte)."""
    if value < 0 or value > 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {value}")
    out = bytearray()
    rem = value
    while True:
        byte = rem & 0x7F
        rem >>= 7
        if rem == 0:
            out.append(byte)
            return bytes(out)
        out.append(byte | 0x80)


@dataclass(frozen=True)
class Message:
    """A legacy transaction message ready to be signed."""

    header: MessageHeader
    account_keys: Tuple[Pubkey, ...]
    recent_blockhash: str
    instructions: Tuple[CompiledInstruction, ...]

    @property
    def signers(self) -> Tuple[Pubkey, ...]:
        return self.account_keys[: self.header.num_required_signatures]

    def is_writable(self, index: int) -> bool:
        h = self.header
        n_keys = len(self.account_keys)
        if index < h.num_required_signatures:
            return index < h.num_required_signatures - h.num_readonly_signed
        return index < n_keys - h.num_readonly_unsigned

    def serialize(self) -> bytes:
        blockhash = base58.b58decode(self.recent_blockhash)
        if len(blockhash) != 32:
            raise ValueError("recent_blockhash must decode to 32 bytes")
        out = bytearray(
            [
                self.header.num_required_signatures,
                self.header.num_readonly_signed,
                self.header.num_readonly_unsigned,
            ]
        )
        out += encode_compact_u16(len(self.account_keys))
        for key in self.account_keys:
            out += bytes(key)
        out += blockhash
        out += encode_compact_u16(len(self.instructions))
        for ix in self.instructions:
            out.append(ix.program_id_index)
            out += encode_compact_u16(len(ix.account_indexes))
            out += bytes(ix.account_indexes)
            out += encode_compact_u16(len(ix.data))
            out += ix.data
        return bytes(out)


def compile_message(
    instructions: Sequence[Instruction],
    payer: Pubkey,
    recent_blockhash: str,
) -> Message:
    """
    Compile instructions into a legacy message.

    Ordering rules
    - The fee payer is always the first key (writable signer).
    - Keys are de-duplicated; signer/writable flags are OR-merged.
    - Remaining keys are grouped as writable signers, read-only signers,
      writable non-signers, read-only non-signers, each group keeping
      first-seen order. Program ids join as read-only non-signers.
    """
    if not instructions:
        raise ValueError("At least one instruction is required")

    flags: Dict[Pubkey, List[bool]] = {payer: [True, True]}
    order: List[Pubkey] = [payer]

    def _add(key: Pubkey, signer: bool, writable: bool) -> None:
        if key not in flags:
            flags[key] = [signer, writable]
            order.append(key)
        else:
            flags[key][0] = flags[key][0] or signer
            flags[key][1] = flags[key][1] or writable

    for ix in instructions:
        for meta in ix.accounts:
            _add(meta.pubkey, meta.is_signer, meta.is_writable)
        _add(ix.program_id, False, False)

    rest = order[1:]
    groups = (
        [k for k in rest if flags[k][0] and flags[k][1]],
        [k for k in rest if flags[k][0] and not flags[k][1]],
        [k for k in rest if not flags[k][0] and flags[k][1]],
        [k for k in rest if not flags[k][0] and not flags[k][1]],
    )
    keys: Tuple[Pubkey, ...] = (payer, *groups[0], *groups[1], *groups[2], *groups[3])
    header = MessageHeader(
        num_required_signatures=1 + len(groups[0]) + len(groups[1]),
        num_readonly_signed=len(groups[1]),
        num_readonly_unsigned=len(groups[3]),
    )

    index = {k: i for i, k in enumerate(keys)}
    compiled = tuple(
        CompiledInstruction(
            program_id_index=index[ix.program_id],
            account_indexes=tuple(index[m.pubkey] for m in ix.accounts),
            data=bytes(ix.data),
        )
        for ix in instructions
    )
    return Message(
        header=header,
        account_keys=keys,
        recent_blockhash=recent_blockhash,
        instructions=compiled,
    )


@dataclass(frozen=True)
class SignedTransaction:
    signatures: Tuple[bytes, ...]
    message: Message

    @property
    def signature(self) -> str:
        """Transaction id: base58 of the fee payer's signature."""
        return base58.b58encode(self.signatures[0]).decode("ascii")

    def serialize(self) -> bytes:
        out = bytearray(encode_compact_u16(len(self.signatures)))
        for sig in self.signatures:
            out += sig
        out += self.message.serialize()
        return bytes(out)


def sign_transaction(message: Message, signers: Sequence[Keypair]) -> SignedTransaction:
    by_key = {kp.pubkey: kp for kp in signers}
    payload = message.serialize()
    sigs: List[bytes] = []
    for key in message.signers:
        kp = by_key.get(key)
        if kp is None:
            raise ValueError(f"Missing signature for required signer {key}")
        sig = kp.sign(payload)
        if len(sig) != SIGNATURE_LENGTH:
            raise ValueError("Unexpected signature length")
        sigs.append(sig)
    return SignedTransaction(signatures=tuple(sigs), message=message)


__all__ = [
    "AccountMeta",
    "CompiledInstruction",
    "Instruction",
    "Message",
    "MessageHeader",
    "SignedTransaction",
    "compile_message",
    "encode_compact_u16",
    "sign_transaction",
]
