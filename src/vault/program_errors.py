from __future__ import annotations

from typing import Dict, Optional


# Vault program error codes (framework offset 6000 + variant index)
PROGRAM_ERRORS: Dict[int, str] = {
    6000: "Paused",
    6001: "InvalidUnlockTime",
    6002: "AlreadyReleased",
    6003: "MismatchedMint",
    6004: "NothingToRelease",
    6005: "InvalidAmount",
    6006: "AboveVaultCap",
    6007: "Overflow",
    6008: "InvalidBeneficiary",
    6009: "DepositAfterUnlock",
    6010: "NotReleased",
    6011: "VaultNotEmpty",
    6015: "VaultAlreadyCancelled",
    6016: "CannotCancelAfterRelease",
    6017: "AdminTestWalletsLimitExceeded",
}

ALREADY_RELEASED = 6002
NOT_RELEASED = 6010


def describe_program_error(code: Optional[int]) -> Optional[str]:
    if code is None:
        return None
    name = PROGRAM_ERRORS.get(code)
    return f"{name} ({code})" if name else f"custom program error {code}"


__all__ = [
    "ALREADY_RELEASED",
    "NOT_RELEASED",
    "PROGRAM_ERRORS",
    "describe_program_error",
]
