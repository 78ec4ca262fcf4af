from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


PUBKEY_LENGTH = 32
SIGNATURE_LENGTH = 64
MAX_SEED_LENGTH = 32
MAX_SEEDS = 16

_PDA_MARKER = b"ProgramDerivedAddress"

# Ed25519 field prime and curve constant d = -121665/121666
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


@dataclass(frozen=True)
class Pubkey:
    """A 32-byte ledger address, rendered as base58."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, (bytes, bytearray)):
            raise TypeError("Pubkey expects bytes")
        if len(self.raw) != PUBKEY_LENGTH:
            raise ValueError(f"Pubkey must be {PUBKEY_LENGTH} bytes, got {len(self.raw)}")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_string(cls, value: str) -> "Pubkey":
        if not value or not isinstance(value, str):
            raise ValueError("Empty address")
        try:
            raw = base58.b58decode(value.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid base58 address: {value!r}") from exc
        return cls(raw)

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return base58.b58encode(self.raw).decode("ascii")

    def __repr__(self) -> str:
        return f"Pubkey({self})"


SYSTEM_PROGRAM_ID = Pubkey(bytes(PUBKEY_LENGTH))
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")


class Keypair:
    """
    Ed25519 signing key for the keeper's fee-payer account.

    Accepted secret encodings
    - base58 of the 64-byte `secret || public` form exported by wallets
    - base58 of a bare 32-byte seed
    - JSON byte array as written by `solana-keygen` (64 integers)
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._key = private_key
        public = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._pubkey = Pubkey(public)

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_secret_bytes(cls, secret: bytes) -> "Keypair":
        if len(secret) not in (32, 64):
            raise ValueError(f"Secret key must be 32 or 64 bytes, got {len(secret)}")
        kp = cls(Ed25519PrivateKey.from_private_bytes(bytes(secret[:32])))
        if len(secret) == 64 and bytes(secret[32:]) != kp.pubkey.raw:
            raise ValueError("Secret key public half does not match its seed")
        return kp

    @classmethod
    def from_base58(cls, value: str) -> "Keypair":
        if not value:
            raise ValueError("Empty secret key")
        try:
            raw = base58.b58decode(value.strip())
        except ValueError as exc:
            raise ValueError("Secret key is not valid base58") from exc
        return cls.from_secret_bytes(raw)

    @classmethod
    def from_json(cls, value: str) -> "Keypair":
        try:
            data = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError("Secret key is not a JSON byte array") from exc
        if not isinstance(data, list) or not all(isinstance(b, int) and 0 <= b <= 255 for b in data):
            raise ValueError("Secret key JSON must be an array of byte values")
        return cls.from_secret_bytes(bytes(data))

    @classmethod
    def from_secret(cls, value: str) -> "Keypair":
        """Parse either supported text encoding."""
        s = (value or "").strip()
        if s.startswith("["):
            return cls.from_json(s)
        return cls.from_base58(s)

    @property
    def pubkey(self) -> Pubkey:
        return self._pubkey

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def __repr__(self) -> str:
        return f"Keypair(pubkey={self._pubkey})"


def is_on_curve(point: bytes) -> bool:
    """Return True if `point` decompresses to a valid Ed25519 curve point."""
    if len(point) != PUBKEY_LENGTH:
        return False
    y = (int.from_bytes(point, "little") & ((1 << 255) - 1)) % _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    # x^2 must be a quadratic residue (Euler's criterion)
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


Seed = Union[bytes, Pubkey]


def _seed_bytes(seed: Seed) -> bytes:
    b = bytes(seed)
    if len(b) > MAX_SEED_LENGTH:
        raise ValueError(f"Seed exceeds {MAX_SEED_LENGTH} bytes")
    return b


def create_program_address(seeds: Sequence[Seed], program_id: Pubkey) -> Pubkey:
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"At most {MAX_SEEDS} seeds are allowed")
    h = hashlib.sha256()
    for seed in seeds:
        h.update(_seed_bytes(seed))
    h.update(bytes(program_id))
    h.update(_PDA_MARKER)
    digest = h.digest()
    if is_on_curve(digest):
        raise ValueError("Derived address lies on the Ed25519 curve")
    return Pubkey(digest)


def find_program_address(seeds: Sequence[Seed], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Search bumps 255..0 for the first off-curve derived address."""
    raw_seeds = [_seed_bytes(s) for s in seeds]
    for bump in range(255, -1, -1):
        try:
            return create_program_address([*raw_seeds, bytes([bump])], program_id), bump
        except ValueError:
            continue
    raise ValueError("Unable to find a viable program address bump")


def get_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    *,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    address, _ = find_program_address(
        [owner, token_program_id, mint], ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address


__all__ = [
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "Keypair",
    "Pubkey",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "create_program_address",
    "find_program_address",
    "get_associated_token_address",
    "is_on_curve",
]
