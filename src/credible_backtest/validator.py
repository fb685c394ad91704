"""
Replay one historical transaction with an assertion attached.

Single pass per transaction:
  fork (pre-state) -> attach assertion -> pick gas price -> cap base fee
  -> execute as the original sender -> classify.

Forks are never reused: every replay starts from a fresh fork. A failing
assertion is replayed a second time, without the assertion and with tracing
on, so the execution trace is available for debugging; that second run is
not classified or counted.
"""

import logging
from typing import Callable, Optional

from .classifier import RevertClassifier
from .config import BacktestConfig
from .errors import BacktestError
from .executor import AssertionExecutor
from .models import TransactionRecord, ValidationOutcome, ValidationResult
from .parser import decode_revert_reason

log = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 2 ** 24

Classifier = Callable[[bool, str], ValidationResult]


def effective_gas_price(record: TransactionRecord) -> int:
    if record.max_fee_per_gas:
        return record.max_fee_per_gas
    return record.gas_price


def effective_gas_limit(record: TransactionRecord) -> int:
    return record.gas_limit or DEFAULT_GAS_LIMIT


class ReplayValidator:
    def __init__(
        self,
        executor: AssertionExecutor,
        config: BacktestConfig,
        classifier: Optional[Classifier] = None,
    ):
        self.executor = executor
        self.config = config
        self.classifier = classifier or RevertClassifier()

    def _fork(self, record: TransactionRecord) -> None:
        if self.config.fork_by_tx_hash:
            self.executor.fork_by_transaction(record.hash)
        else:
            self.executor.fork_by_block(record.block_number)

    def _cap_base_fee(self, record: TransactionRecord) -> None:
        """Keep the replay affordable for the sender if the fee market moved since the original run."""
        balance = self.executor.balance_of(record.from_address)
        affordable = balance // effective_gas_limit(record)
        base_fee = self.executor.base_fee()
        if base_fee > affordable:
            log.debug("capping base fee %d -> %d for %s", base_fee, affordable, record.hash)
            self.executor.set_base_fee(affordable)

    def _execute(self, record: TransactionRecord, traced: bool = False):
        return self.executor.execute(
            sender=record.from_address,
            to=record.to,
            value=record.value,
            data=record.data,
            gas_limit=effective_gas_limit(record),
            gas_price=effective_gas_price(record),
            traced=traced,
        )

    def validate(self, record: TransactionRecord) -> ValidationResult:
        try:
            self._fork(record)
            self.executor.attach_assertion(
                self.config.target_contract,
                self.config.assertion_creation_code,
                self.config.trigger_selector,
            )
            self._cap_base_fee(record)
            outcome = self._execute(record)
        except BacktestError as e:
            log.error("Replay of %s could not run: %s", record.hash, e)
            return ValidationResult(ValidationOutcome.UNKNOWN_ERROR, str(e))
        except Exception as e:
            log.exception("Assertion host failed on %s", record.hash)
            return ValidationResult(ValidationOutcome.UNKNOWN_ERROR, f"{type(e).__name__}: {e}")

        message = "" if outcome.success else decode_revert_reason(outcome.return_data)
        result = self.classifier(outcome.success, message)

        if result.is_protocol_violation and self.config.trace_failures:
            self.replay_with_trace(record)
        return result

    def replay_with_trace(self, record: TransactionRecord) -> None:
        """Re-run the raw call without the assertion so the host prints the full trace."""
        log.info("Replaying %s with tracing for debugging", record.hash)
        try:
            self._fork(record)
            self._cap_base_fee(record)
            traced = self._execute(record, traced=True)
        except Exception as e:
            log.warning("Traced replay of %s failed: %s", record.hash, e)
            return
        log.info("Traced replay of %s %s", record.hash, "succeeded" if traced.success else "reverted")
