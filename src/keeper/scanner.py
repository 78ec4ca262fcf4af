from __future__ import annotations

import logging
from typing import List

from ledger.keys import Pubkey
from ledger.rpc import SolanaRpcClient
from vault.layout import VAULT_ACCOUNT_SIZE, SchemaMismatch, VaultAccount, decode_vault


logger = logging.getLogger("keeper.scanner")


def scan_vaults(
    rpc: SolanaRpcClient,
    program_id: Pubkey,
    *,
    commitment: str = "confirmed",
) -> List[VaultAccount]:
    """
    Fetch and decode every current-schema vault owned by `program_id`.

    A full scan per call; no state is carried between cycles. Accounts that
    fail to decode are dropped at DEBUG level. RPC errors propagate.
    """
    accounts = rpc.get_program_accounts(
        program_id, data_size=VAULT_ACCOUNT_SIZE, commitment=commitment
    )
    logger.info("Found %d vault accounts on-chain", len(accounts))

    vaults: List[VaultAccount] = []
    for acct in accounts:
        decoded = decode_vault(acct.data)
        if isinstance(decoded, SchemaMismatch):
            logger.debug(
                "Skipping %s: schema mismatch (%s, %d bytes)",
                acct.pubkey,
                decoded.reason,
                decoded.size,
            )
            continue
        try:
            address = Pubkey.from_string(acct.pubkey)
        except ValueError:
            logger.debug("Skipping account with undecodable address %r", acct.pubkey)
            continue
        vaults.append(VaultAccount(address=address, record=decoded))
    return vaults


__all__ = ["scan_vaults"]
