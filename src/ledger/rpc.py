from __future__ import annotations

import base64
import itertools
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .keys import Pubkey
from .rate_limiter import RateLimitError, SlidingWindowRateLimiter


DEFAULT_RPC_URL = "https://api.devnet.solana.com"
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")

logger = logging.getLogger("ledger.rpc")

_CUSTOM_ERROR_RE = re.compile(r"custom program error: (0x[0-9a-fA-F]+|\d+)")


class LedgerRpcError(RuntimeError):
    """Base error for the ledger RPC client."""


class LedgerApiError(LedgerRpcError):
    """JSON-RPC error payload, malformed result, or a transaction that failed on-chain."""

    def __init__(self, message: str, *, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data

    @property
    def logs(self) -> List[str]:
        if isinstance(self.data, dict) and isinstance(self.data.get("logs"), list):
            return [str(line) for line in self.data["logs"]]
        return []

    @property
    def custom_code(self) -> Optional[int]:
        """Program-defined error code when the failure is an instruction error."""
        if isinstance(self.data, dict):
            code = custom_error_code(self.data.get("err"))
            if code is not None:
                return code
        m = _CUSTOM_ERROR_RE.search(str(self))
        if m:
            return int(m.group(1), 0)
        return None


class LedgerRateLimitError(LedgerRpcError):
    """Local or remote rate limiting prevented the request."""


class ConfirmationTimeout(LedgerRpcError):
    """The transaction was not confirmed before the deadline or blockhash expiry."""


def custom_error_code(err: Any) -> Optional[int]:
    # Shape: {"InstructionError": [0, {"Custom": 6002}]}
    if not isinstance(err, dict):
        return None
    ie = err.get("InstructionError")
    if isinstance(ie, (list, tuple)) and len(ie) == 2 and isinstance(ie[1], dict):
        code = ie[1].get("Custom")
        if isinstance(code, int) and not isinstance(code, bool):
            return code
    return None


class ProgramAccount(BaseModel):
    pubkey: str
    data: bytes
    lamports: int = 0
    owner: Optional[str] = None


class LatestBlockhash(BaseModel):
    blockhash: str
    last_valid_block_height: int


class SignatureStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slot: int = 0
    confirmations: Optional[int] = None
    err: Optional[Any] = None
    confirmation_status: Optional[str] = Field(default=None, alias="confirmationStatus")

    def reached(self, commitment: str) -> bool:
        if self.confirmation_status is None:
            # Older nodes omit the field; null confirmations means rooted
            return self.confirmations is None
        try:
            have = COMMITMENT_LEVELS.index(self.confirmation_status)
            want = COMMITMENT_LEVELS.index(commitment)
        except ValueError:
            return False
        return have >= want


class SolanaRpcClient:
    """
    Minimal JSON-RPC client for the calls the keeper needs.

    Notes
    - Public endpoints rate limit aggressively; a local sliding-window limiter
      (default 10 req/sec) keeps bursts in check.
    - Transport errors, HTTP 429 and 5xx are retried with exponential backoff.
    - JSON-RPC error payloads are not retried; they surface as LedgerApiError
      so callers can inspect simulation logs and program error codes.
    """

    def __init__(
        self,
        url: str = DEFAULT_RPC_URL,
        *,
        timeout: float = 30.0,
        max_per_second: int = 10,
        max_attempts: int = 4,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        self.url = url
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout)
        self._sleep = sleep
        self._clock = clock
        self._limiter = SlidingWindowRateLimiter(
            max_calls=max_per_second, per_seconds=1.0, clock=clock, sleep=sleep
        )
        self._ids = itertools.count(1)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "SolanaRpcClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def get_program_accounts(
        self,
        program_id: Pubkey,
        *,
        data_size: Optional[int] = None,
        commitment: str = "confirmed",
    ) -> List[ProgramAccount]:
        """All accounts owned by `program_id`, optionally filtered by exact byte length."""
        config: Dict[str, Any] = {"encoding": "base64", "commitment": commitment}
        if data_size is not None:
            config["filters"] = [{"dataSize": data_size}]
        result = self._call("getProgramAccounts", [str(program_id), config])
        if not isinstance(result, list):
            raise LedgerApiError("Malformed getProgramAccounts result")

        out: List[ProgramAccount] = []
        for item in result:
            try:
                account = item["account"]
                encoded = account["data"]
                if isinstance(encoded, list):
                    encoded = encoded[0]
                out.append(
                    ProgramAccount(
                        pubkey=item["pubkey"],
                        data=base64.b64decode(encoded),
                        lamports=account.get("lamports", 0),
                        owner=account.get("owner"),
                    )
                )
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                raise LedgerApiError(f"Failed to parse program account: {exc}") from exc
        return out

    def get_latest_blockhash(self, *, commitment: str = "confirmed") -> LatestBlockhash:
        result = self._call("getLatestBlockhash", [{"commitment": commitment}])
        try:
            value = result["value"]
            return LatestBlockhash(
                blockhash=value["blockhash"],
                last_valid_block_height=value["lastValidBlockHeight"],
            )
        except (KeyError, TypeError, ValidationError) as exc:
            raise LedgerApiError(f"Malformed getLatestBlockhash result: {exc}") from exc

    def send_transaction(
        self,
        wire: bytes,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "confirmed",
    ) -> str:
        """Submit a signed transaction; returns its signature.

        With preflight enabled the node simulates first, so program rejections
        (e.g. an already-released vault) arrive here as LedgerApiError.
        """
        config = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": preflight_commitment,
        }
        result = self._call(
            "sendTransaction", [base64.b64encode(wire).decode("ascii"), config]
        )
        if not isinstance(result, str):
            raise LedgerApiError("Malformed sendTransaction result")
        return result

    def get_signature_statuses(
        self, signatures: Sequence[str], *, search_history: bool = False
    ) -> List[Optional[SignatureStatus]]:
        result = self._call(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": search_history}],
        )
        try:
            values = result["value"]
            return [SignatureStatus.model_validate(v) if v is not None else None for v in values]
        except (KeyError, TypeError, ValidationError) as exc:
            raise LedgerApiError(f"Malformed getSignatureStatuses result: {exc}") from exc

    def get_block_height(self, *, commitment: str = "confirmed") -> int:
        result = self._call("getBlockHeight", [{"commitment": commitment}])
        if not isinstance(result, int):
            raise LedgerApiError("Malformed getBlockHeight result")
        return result

    def get_balance(self, pubkey: Pubkey, *, commitment: str = "confirmed") -> int:
        result = self._call("getBalance", [str(pubkey), {"commitment": commitment}])
        try:
            return int(result["value"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerApiError(f"Malformed getBalance result: {exc}") from exc

    def confirm_transaction(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        last_valid_block_height: Optional[int] = None,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> SignatureStatus:
        """
        Poll until `signature` reaches `commitment`.

        Raises
        - LedgerApiError if the transaction landed but failed on-chain.
        - ConfirmationTimeout if the blockhash expired or `timeout` elapsed.
        """
        deadline = self._clock() + timeout
        while True:
            status = self.get_signature_statuses([signature])[0]
            if status is not None:
                if status.err is not None:
                    raise LedgerApiError(
                        f"Transaction {signature} failed: {status.err}",
                        data={"err": status.err},
                    )
                if status.reached(commitment):
                    return status
            if last_valid_block_height is not None:
                height = self.get_block_height(commitment=commitment)
                if height > last_valid_block_height:
                    raise ConfirmationTimeout(
                        f"Blockhash expired before {signature} was confirmed"
                    )
            if self._clock() >= deadline:
                raise ConfirmationTimeout(
                    f"Transaction {signature} not confirmed within {timeout:.0f}s"
                )
            self._sleep(poll_interval)

    # --------------- Internal ---------------
    def _call(self, method: str, params: List[Any]) -> Any:
        try:
            self._limiter.acquire(blocking=True)
        except RateLimitError as rl:
            raise LedgerRateLimitError("Local rate limiter prevented request") from rl

        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.post(self.url, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code == 200:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise LedgerApiError(f"Invalid JSON from RPC for {method}") from exc
                    return self._unwrap(method, payload)
                if resp.status_code in (429, 500, 502, 503, 504):
                    last_exc = (
                        LedgerRateLimitError(f"HTTP 429 from RPC ({method})")
                        if resp.status_code == 429
                        else LedgerApiError(f"HTTP {resp.status_code} from RPC ({method})")
                    )
                else:
                    raise LedgerApiError(
                        f"HTTP {resp.status_code} from RPC ({method}): {resp.text[:200]}"
                    )

            attempt += 1
            if attempt < self._max_attempts:
                logger.debug("Retrying %s after %s (attempt %d)", method, last_exc, attempt)
                self._sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise LedgerRpcError(f"{method} failed after {self._max_attempts} attempts") from last_exc
        raise LedgerRpcError(f"{method} failed after retries (unknown error)")

    @staticmethod
    def _unwrap(method: str, payload: Any) -> Any:
        if not isinstance(payload, dict):
            raise LedgerApiError(f"Malformed JSON-RPC envelope for {method}")
        err = payload.get("error")
        if err is not None:
            if isinstance(err, dict):
                raise LedgerApiError(
                    f"{method}: {err.get('message', 'RPC error')}",
                    code=err.get("code"),
                    data=err.get("data"),
                )
            raise LedgerApiError(f"{method}: {err}")
        if "result" not in payload:
            raise LedgerApiError(f"JSON-RPC response for {method} has no result")
        return payload["result"]


__all__ = [
    "COMMITMENT_LEVELS",
    "ConfirmationTimeout",
    "DEFAULT_RPC_URL",
    "LatestBlockhash",
    "LedgerApiError",
    "LedgerRateLimitError",
    "LedgerRpcError",
    "ProgramAccount",
    "SignatureStatus",
    "SolanaRpcClient",
    "custom_error_code",
]
