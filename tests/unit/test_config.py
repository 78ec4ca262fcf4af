from __future__ import annotations

import json
from typing import Dict, List, Optional

import base58
import pytest
from cryptography.fernet import Fernet

from keeper.config import ConfigError, load_config
from ledger.keys import Keypair
from ledger.rpc import DEFAULT_RPC_URL
from vault.instructions import DEFAULT_PROGRAM_ID


@pytest.fixture
def keypair() -> Keypair:
    return Keypair.generate()


def _secret(kp: Keypair) -> str:
    return base58.b58encode(kp._key.private_bytes_raw() + kp.pubkey.raw).decode()


def _no_ssm(prefix, names):  # pragma: no cover - must not be reached
    raise AssertionError("SSM must not be queried")


def test_defaults(keypair):
    cfg = load_config({"KEEPER_PRIVATE_KEY": _secret(keypair)}, ssm_loader=_no_ssm)

    assert cfg.keypair.pubkey == keypair.pubkey
    assert cfg.rpc_url == DEFAULT_RPC_URL
    assert cfg.poll_interval_ms == 60_000
    assert cfg.poll_interval == 60.0
    assert str(cfg.program_id) == DEFAULT_PROGRAM_ID
    assert cfg.commitment == "confirmed"
    assert cfg.release_pause == 1.0
    assert cfg.close_sweep is False
    assert cfg.persists_stats is False


def test_overrides(keypair):
    env = {
        "KEEPER_PRIVATE_KEY": json.dumps(list(keypair._key.private_bytes_raw() + keypair.pubkey.raw)),
        "SOLANA_RPC_URL": "https://rpc.example",
        "POLL_INTERVAL_MS": "5000",
        "KEEPER_COMMITMENT": "Finalized",
        "KEEPER_CONFIRM_TIMEOUT_SECONDS": "90",
        "KEEPER_RELEASE_PAUSE_MS": "0",
        "KEEPER_CLOSE_SWEEP": "true",
        "KEEPER_STATE_BUCKET": "bucket",
        "KEEPER_FERNET_KEY": Fernet.generate_key().decode(),
    }
    cfg = load_config(env, ssm_loader=_no_ssm)

    assert cfg.keypair.pubkey == keypair.pubkey
    assert cfg.rpc_url == "https://rpc.example"
    assert cfg.poll_interval == 5.0
    assert cfg.commitment == "finalized"
    assert cfg.confirm_timeout == 90.0
    assert cfg.release_pause == 0.0
    assert cfg.close_sweep is True
    assert cfg.persists_stats is True
    assert cfg.state_key == "keeper-stats.json"


def test_missing_key_is_fatal():
    with pytest.raises(ConfigError):
        load_config({}, ssm_loader=_no_ssm)


@pytest.mark.parametrize(
    "name,value",
    [
        ("KEEPER_PRIVATE_KEY", "not-a-key"),
        ("POLL_INTERVAL_MS", "0"),
        ("POLL_INTERVAL_MS", "soon"),
        ("KEEPER_PROGRAM_ID", "0OIl"),
        ("KEEPER_COMMITMENT", "max"),
        ("KEEPER_CONFIRM_TIMEOUT_SECONDS", "-1"),
        ("KEEPER_RELEASE_PAUSE_MS", "-5"),
    ],
)
def test_invalid_values_raise_config_error(keypair, name, value):
    env = {"KEEPER_PRIVATE_KEY": _secret(keypair), name: value}
    with pytest.raises(ConfigError):
        load_config(env, ssm_loader=_no_ssm)


def test_secret_from_ssm_when_env_empty(keypair):
    requested: List[str] = []

    def fake_ssm(prefix: str, names) -> Dict[str, Optional[str]]:
        requested.append(prefix)
        return {"keeper_private_key": _secret(keypair), "fernet_key": None}

    cfg = load_config({"KEEPER_PRIVATE_KEY": "", "KEEPER_PARAM_PREFIX": "/keeper/dev/"}, ssm_loader=fake_ssm)
    assert requested == ["/keeper/dev/"]
    assert cfg.keypair.pubkey == keypair.pubkey


def test_ssm_only_consulted_when_needed(keypair):
    env = {"KEEPER_PRIVATE_KEY": _secret(keypair), "KEEPER_PARAM_PREFIX": "/keeper/dev/"}
    cfg = load_config(env, ssm_loader=_no_ssm)
    assert cfg.keypair.pubkey == keypair.pubkey


def test_fernet_key_from_ssm_for_stats_bucket(keypair):
    fernet_key = Fernet.generate_key().decode()

    def fake_ssm(prefix: str, names) -> Dict[str, Optional[str]]:
        return {"keeper_private_key": None, "fernet_key": fernet_key}

    env = {
        "KEEPER_PRIVATE_KEY": _secret(keypair),
        "KEEPER_PARAM_PREFIX": "/keeper/dev/",
        "KEEPER_STATE_BUCKET": "bucket",
    }
    cfg = load_config(env, ssm_loader=fake_ssm)
    assert cfg.fernet_key == fernet_key
    assert cfg.persists_stats is True


def test_malformed_fernet_key_is_a_config_error(keypair):
    env = {
        "KEEPER_PRIVATE_KEY": _secret(keypair),
        "KEEPER_STATE_BUCKET": "bucket",
        "KEEPER_FERNET_KEY": "k" * 44,
    }
    with pytest.raises(ConfigError, match="KEEPER_FERNET_KEY"):
        load_config(env, ssm_loader=_no_ssm)


def test_fernet_key_unchecked_without_bucket(keypair):
    env = {"KEEPER_PRIVATE_KEY": _secret(keypair), "KEEPER_FERNET_KEY": "not-a-key"}
    cfg = load_config(env, ssm_loader=_no_ssm)
    assert cfg.persists_stats is False
