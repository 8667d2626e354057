from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from core.models import Chain, ChainMode, SpamFilterLevel


LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(RuntimeError):
    pass


class ChainIdMismatch(ConfigError):
    pass


@dataclass(frozen=True)
class Settings:
    chains: List[Chain]
    ntfy_url: str
    ntfy_topic: str
    ntfy_token: str
    static_accounts_path: Optional[str] = None
    debug_block: Optional[int] = None
    token_db_path: str = "rotki_db.db"
    http_host: str = "0.0.0.0"
    http_port: int = 3030
    rpc_timeout: float = 5.0
    ntfy_timeout: float = 5.0
    log_level: str = "INFO"


def _get(env: Mapping[str, str], name: str) -> str:
    return (env.get(name) or "").strip()


def _require(env: Mapping[str, str], name: str) -> str:
    v = _get(env, name)
    if not v:
        raise ConfigError(f"Missing {name}")
    return v


def _int(env: Mapping[str, str], name: str, default: Optional[int] = None) -> Optional[int]:
    raw = _get(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {raw!r} is not an integer") from e


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {raw!r} is not a number") from e


def chain_from_env(env: Mapping[str, str], key: str) -> Chain:
    """Reads the CHAIN_*_<KEY> variables of one chain."""
    suffix = f"_{key}"

    blocktime_var = f"CHAIN_BLOCKTIME{suffix}"
    if not _get(env, blocktime_var) and _get(env, f"CHAIN_BLOCKTME{suffix}"):
        blocktime_var = f"CHAIN_BLOCKTME{suffix}"  # older deployments
    _require(env, blocktime_var)
    blocktime_ms = _int(env, blocktime_var)
    if blocktime_ms <= 0:
        raise ConfigError(f"Invalid {blocktime_var}: must be positive")

    mode_var = f"CHAIN_MODE{suffix}"
    try:
        mode = ChainMode(_get(env, mode_var) or ChainMode.BLOCKS.value)
    except ValueError as e:
        raise ConfigError(f"Invalid {mode_var}") from e

    level_var = f"CHAIN_SPAM_FILTER_LEVEL{suffix}"
    try:
        level = SpamFilterLevel(_get(env, level_var) or SpamFilterLevel.KNOWN_ASSETS.value)
    except ValueError as e:
        raise ConfigError(f"Invalid {level_var}") from e

    return Chain(
        id=_int(env, f"CHAIN_ID{suffix}"),
        name=_require(env, f"CHAIN_NAME{suffix}"),
        rpc=_require(env, f"CHAIN_RPC{suffix}"),
        blocktime=blocktime_ms / 1000.0,
        explorer=_get(env, f"CHAIN_EXPLORER{suffix}") or None,
        mode=mode,
        spam_filter_level=level,
    )


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build and validate the full configuration. Raises ConfigError on the first
    problem so nothing is started with a half-valid setup.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    keys = [k.strip() for k in _require(env, "CHAINS").split(",") if k.strip()]
    if not keys:
        raise ConfigError("Missing CHAINS")
    chains = [chain_from_env(env, key) for key in keys]

    log_level = (_get(env, "LOG_LEVEL") or "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"Invalid LOG_LEVEL: {log_level}")

    debug_block = _int(env, "DEBUG_BLOCK")
    if debug_block is not None and debug_block < 0:
        raise ConfigError("Invalid DEBUG_BLOCK")

    return Settings(
        chains=chains,
        ntfy_url=_require(env, "NTFY_URL"),
        ntfy_topic=_require(env, "NTFY_TOPIC"),
        ntfy_token=_require(env, "NTFY_TOKEN"),
        static_accounts_path=_get(env, "STATIC_ACCOUNTS_PATH") or None,
        debug_block=debug_block,
        token_db_path=_get(env, "TOKEN_DB_PATH") or "rotki_db.db",
        http_host=_get(env, "HTTP_HOST") or "0.0.0.0",
        http_port=_int(env, "HTTP_PORT", 3030),
        rpc_timeout=_float(env, "RPC_TIMEOUT", 5.0),
        ntfy_timeout=_float(env, "NTFY_TIMEOUT", 5.0),
        log_level=log_level,
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
