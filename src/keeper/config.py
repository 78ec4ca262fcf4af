from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional

from cryptography.fernet import Fernet

from ledger.keys import Keypair, Pubkey
from ledger.rpc import COMMITMENT_LEVELS, DEFAULT_RPC_URL
from vault.instructions import DEFAULT_PROGRAM_ID


ENV_PRIVATE_KEY = "KEEPER_PRIVATE_KEY"
ENV_PARAM_PREFIX = "KEEPER_PARAM_PREFIX"  # optional SSM fallback for secrets
ENV_RPC_URL = "SOLANA_RPC_URL"
ENV_POLL_INTERVAL_MS = "POLL_INTERVAL_MS"
ENV_PROGRAM_ID = "KEEPER_PROGRAM_ID"
ENV_COMMITMENT = "KEEPER_COMMITMENT"
ENV_CONFIRM_TIMEOUT = "KEEPER_CONFIRM_TIMEOUT_SECONDS"
ENV_RELEASE_PAUSE_MS = "KEEPER_RELEASE_PAUSE_MS"
ENV_CLOSE_SWEEP = "KEEPER_CLOSE_SWEEP"
ENV_STATE_BUCKET = "KEEPER_STATE_BUCKET"
ENV_STATE_KEY = "KEEPER_STATE_KEY"  # optional; defaults to "keeper-stats.json"
ENV_FERNET_KEY = "KEEPER_FERNET_KEY"

DEFAULT_POLL_INTERVAL_MS = 60_000
DEFAULT_CONFIRM_TIMEOUT = 60.0
DEFAULT_RELEASE_PAUSE_MS = 1_000
DEFAULT_STATE_KEY = "keeper-stats.json"

SSM_PRIVATE_KEY = "keeper_private_key"
SSM_FERNET_KEY = "fernet_key"


class ConfigError(RuntimeError):
    """Missing or invalid keeper configuration; fatal at startup."""


@dataclass(frozen=True)
class KeeperConfig:
    keypair: Keypair
    rpc_url: str
    poll_interval_ms: int
    program_id: Pubkey
    commitment: str = "confirmed"
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    release_pause_ms: int = DEFAULT_RELEASE_PAUSE_MS
    close_sweep: bool = False
    state_bucket: Optional[str] = None
    state_key: str = DEFAULT_STATE_KEY
    fernet_key: Optional[str] = None

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def release_pause(self) -> float:
        return self.release_pause_ms / 1000.0

    @property
    def persists_stats(self) -> bool:
        return bool(self.state_bucket and self.fernet_key)


def _getenv(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    val = env.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise ConfigError(f"Missing required configuration: {what}")
    return v


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        try:
            resp = ssm.get_parameter(Name=f"{prefix}{name}", WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def _positive_int(raw: Optional[str], name: str, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be > 0, got {value}")
    return value


def _non_negative_int(raw: Optional[str], name: str, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")
    return value


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    *,
    ssm_loader: Callable[[str, Iterable[str]], Dict[str, Optional[str]]] = _load_ssm_params,
) -> KeeperConfig:
    """
    Resolve keeper configuration from the environment.

    The signing key comes from KEEPER_PRIVATE_KEY, or from SSM under
    KEEPER_PARAM_PREFIX when the variable is empty. Raises ConfigError on any
    missing or malformed value.
    """
    env = os.environ if environ is None else environ

    secret = _getenv(env, ENV_PRIVATE_KEY)
    fernet_key = _getenv(env, ENV_FERNET_KEY)
    prefix = _getenv(env, ENV_PARAM_PREFIX)
    state_bucket = _getenv(env, ENV_STATE_BUCKET)
    if prefix and (secret is None or (state_bucket and fernet_key is None)):
        params = ssm_loader(prefix, [SSM_PRIVATE_KEY, SSM_FERNET_KEY])
        secret = secret or params.get(SSM_PRIVATE_KEY)
        fernet_key = fernet_key or params.get(SSM_FERNET_KEY)

    secret = _require(secret, ENV_PRIVATE_KEY)
    try:
        keypair = Keypair.from_secret(secret)
    except ValueError as exc:
        raise ConfigError(f"Invalid {ENV_PRIVATE_KEY}: {exc}") from exc

    program_raw = _getenv(env, ENV_PROGRAM_ID, DEFAULT_PROGRAM_ID) or DEFAULT_PROGRAM_ID
    try:
        program_id = Pubkey.from_string(program_raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {ENV_PROGRAM_ID}: {exc}") from exc

    commitment = (_getenv(env, ENV_COMMITMENT, "confirmed") or "confirmed").lower()
    if commitment not in COMMITMENT_LEVELS:
        raise ConfigError(f"{ENV_COMMITMENT} must be one of {', '.join(COMMITMENT_LEVELS)}")

    timeout_raw = _getenv(env, ENV_CONFIRM_TIMEOUT)
    try:
        confirm_timeout = float(timeout_raw) if timeout_raw is not None else DEFAULT_CONFIRM_TIMEOUT
    except ValueError as exc:
        raise ConfigError(f"{ENV_CONFIRM_TIMEOUT} must be a number, got {timeout_raw!r}") from exc
    if confirm_timeout <= 0:
        raise ConfigError(f"{ENV_CONFIRM_TIMEOUT} must be > 0")

    if state_bucket and fernet_key:
        try:
            Fernet(fernet_key.encode("utf-8"))
        except ValueError as exc:
            raise ConfigError(f"Invalid {ENV_FERNET_KEY}: expected a 32-byte url-safe base64 key") from exc

    return KeeperConfig(
        keypair=keypair,
        rpc_url=_getenv(env, ENV_RPC_URL, DEFAULT_RPC_URL) or DEFAULT_RPC_URL,
        poll_interval_ms=_positive_int(
            _getenv(env, ENV_POLL_INTERVAL_MS), ENV_POLL_INTERVAL_MS, DEFAULT_POLL_INTERVAL_MS
        ),
        program_id=program_id,
        commitment=commitment,
        confirm_timeout=confirm_timeout,
        release_pause_ms=_non_negative_int(
            _getenv(env, ENV_RELEASE_PAUSE_MS), ENV_RELEASE_PAUSE_MS, DEFAULT_RELEASE_PAUSE_MS
        ),
        close_sweep=_flag(_getenv(env, ENV_CLOSE_SWEEP)),
        state_bucket=state_bucket,
        state_key=_getenv(env, ENV_STATE_KEY, DEFAULT_STATE_KEY) or DEFAULT_STATE_KEY,
        fernet_key=fernet_key,
    )


__all__ = ["ConfigError", "KeeperConfig", "load_config"]
