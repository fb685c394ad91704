"""
Run parameters for a backtest.

One versioned record with explicit defaults. Every field is validated when
the record is built, and `from_dict` refuses keys it does not know instead of
dropping them, so a stale config file fails loudly.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError
from .utils import hex_to_bytes, parse_address

log = logging.getLogger(__name__)

CONFIG_VERSION = 1

# Fetcher CLI defaults. The backtest runner uses the tuned values, which
# FETCH_BATCH_SIZE and FETCH_MAX_CONCURRENT override when a config is built.
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_CONCURRENT = 5
TUNED_BATCH_SIZE = 20
TUNED_MAX_CONCURRENT = 10
DEFAULT_RPC_TIMEOUT = 30.0


def default_rpc_url() -> Optional[str]:
    return os.getenv("ETH_RPC_URL") or None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def tuned_batch_size() -> int:
    return _env_int("FETCH_BATCH_SIZE", TUNED_BATCH_SIZE)


def tuned_max_concurrent() -> int:
    return _env_int("FETCH_MAX_CONCURRENT", TUNED_MAX_CONCURRENT)


@dataclass(frozen=True)
class BacktestConfig:
    target_contract: str
    end_block: int
    block_range: int
    assertion_bytecode: bytes
    trigger_selector: bytes
    rpc_url: str
    constructor_args: bytes = b""
    fork_by_tx_hash: bool = True
    batch_size: int = field(default_factory=tuned_batch_size)
    max_concurrent: int = field(default_factory=tuned_max_concurrent)
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    detect_internal_calls: bool = True
    trace_failures: bool = True
    version: int = CONFIG_VERSION

    def __post_init__(self):
        if self.version != CONFIG_VERSION:
            raise ConfigError(f"unsupported config version {self.version} (expected {CONFIG_VERSION})")
        if not self.rpc_url:
            raise ConfigError("rpc_url is required")
        try:
            object.__setattr__(self, "target_contract", parse_address(self.target_contract))
        except ValueError as e:
            raise ConfigError(f"invalid target_contract: {self.target_contract!r}") from e
        if not self.target_contract or int(self.target_contract, 16) == 0:
            raise ConfigError("target_contract must be a non-zero address")
        if self.end_block < 1:
            raise ConfigError(f"end_block must be >= 1, got {self.end_block}")
        if self.block_range < 1:
            raise ConfigError(f"block_range must be >= 1, got {self.block_range}")
        if not self.assertion_bytecode:
            raise ConfigError("assertion_bytecode is empty")
        if len(self.trigger_selector) != 4:
            raise ConfigError(f"trigger_selector must be 4 bytes, got {len(self.trigger_selector)}")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be >= 1")
        if self.max_concurrent < 1:
            raise ConfigError("max_concurrent must be >= 1")
        if self.rpc_timeout <= 0:
            raise ConfigError("rpc_timeout must be positive")
        if not self.fork_by_tx_hash:
            log.warning(
                "fork_by_tx_hash is disabled: forking at block boundaries replays on post-state "
                "for every transaction after the first in its block"
            )

    @property
    def start_block(self) -> int:
        return max(1, self.end_block - self.block_range + 1)

    @property
    def assertion_creation_code(self) -> bytes:
        return self.assertion_bytecode + self.constructor_args

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "BacktestConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"unknown config fields: {', '.join(unknown)}")

        values: Dict[str, Any] = dict(raw)
        for key in ("assertion_bytecode", "constructor_args", "trigger_selector"):
            if isinstance(values.get(key), str):
                try:
                    values[key] = hex_to_bytes(values[key])
                except ValueError as e:
                    raise ConfigError(f"{key} is not valid hex") from e
        values.setdefault("rpc_url", default_rpc_url())
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(str(e)) from e
