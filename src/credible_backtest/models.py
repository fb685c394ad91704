from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from .utils import ZERO_ADDRESS, hx


@dataclass(frozen=True)
class TransactionRecord:
    """One historical transaction that touched the target contract."""

    hash: str
    from_address: str
    to: str
    value: int
    data: bytes
    block_number: int
    transaction_index: int
    gas_price: int
    gas_limit: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0

    @property
    def is_contract_creation(self) -> bool:
        return self.to == ZERO_ADDRESS

    @property
    def sort_key(self):
        return (self.block_number, self.transaction_index)

    def simple_fields(self) -> List[str]:
        """Fields in the pipe-delimited wire order (extended layout)."""
        return [
            self.hash,
            self.from_address,
            "" if self.is_contract_creation else self.to,
            str(self.value),
            hx(self.data),
            str(self.block_number),
            str(self.transaction_index),
            str(self.gas_price),
            str(self.gas_limit),
            str(self.max_fee_per_gas),
            str(self.max_priority_fee_per_gas),
        ]

    def to_json_obj(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": "" if self.is_contract_creation else self.to,
            "value": str(self.value),
            "data": hx(self.data),
            "block_number": str(self.block_number),
            "transaction_index": str(self.transaction_index),
            "gas_price": str(self.gas_price),
            "gas_limit": str(self.gas_limit),
            "max_fee_per_gas": str(self.max_fee_per_gas),
            "max_priority_fee_per_gas": str(self.max_priority_fee_per_gas),
        }


class TraceCapability(IntEnum):
    """Internal-call detection methods, higher is preferred."""

    DIRECT_CALLS_ONLY = 0
    DEBUG_TRACE_TRANSACTION = 1
    DEBUG_TRACE_BLOCK_BY_NUMBER = 2
    TRACE_FILTER = 3

    @property
    def rpc_method(self) -> Optional[str]:
        return _CAPABILITY_METHODS.get(self)


_CAPABILITY_METHODS = {
    TraceCapability.TRACE_FILTER: "trace_filter",
    TraceCapability.DEBUG_TRACE_BLOCK_BY_NUMBER: "debug_traceBlockByNumber",
    TraceCapability.DEBUG_TRACE_TRANSACTION: "debug_traceTransaction",
}


class ValidationOutcome(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    REPLAY_FAILURE = "replay_failure"
    ASSERTION_FAILED = "assertion_failed"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class ValidationResult:
    outcome: ValidationOutcome
    message: str = ""

    @property
    def is_protocol_violation(self) -> bool:
        return self.outcome is ValidationOutcome.ASSERTION_FAILED


@dataclass
class BacktestResults:
    """Per-run counters. Each processed transaction bumps exactly one category."""

    total_transactions: int = 0
    processed_transactions: int = 0
    successful_validations: int = 0
    skipped_transactions: int = 0
    assertion_failures: int = 0
    replay_failures: int = 0
    unknown_errors: int = 0
    violations: List[str] = field(default_factory=list)
