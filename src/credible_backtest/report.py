import logging
from typing import List

from .models import BacktestResults, TransactionRecord, ValidationOutcome, ValidationResult

log = logging.getLogger(__name__)

_COUNTERS = {
    ValidationOutcome.SUCCESS: "successful_validations",
    ValidationOutcome.SKIPPED: "skipped_transactions",
    ValidationOutcome.ASSERTION_FAILED: "assertion_failures",
    ValidationOutcome.REPLAY_FAILURE: "replay_failures",
    ValidationOutcome.UNKNOWN_ERROR: "unknown_errors",
}


def record_result(results: BacktestResults, record: TransactionRecord, result: ValidationResult) -> None:
    results.processed_transactions += 1
    attr = _COUNTERS[result.outcome]
    setattr(results, attr, getattr(results, attr) + 1)
    if result.is_protocol_violation:
        results.violations.append(record.hash)


def success_rate(results: BacktestResults) -> float:
    """Percentage of non-skipped transactions that validated. Skipped ones count on neither side."""
    denominator = (
        results.successful_validations
        + results.assertion_failures
        + results.replay_failures
        + results.unknown_errors
    )
    if denominator == 0:
        return 0.0
    return results.successful_validations * 100 / denominator


def is_consistent(results: BacktestResults) -> bool:
    return results.processed_transactions == sum(getattr(results, attr) for attr in _COUNTERS.values())


def describe(record: TransactionRecord, result: ValidationResult) -> str:
    label = result.outcome.value.upper()
    line = f"[{label}] block {record.block_number} idx {record.transaction_index} {record.hash}"
    if result.message:
        line += f": {result.message}"
    return line


def render_summary(results: BacktestResults) -> List[str]:
    lines = [
        "=== BACKTESTING SUMMARY ===",
        f"Total transactions:     {results.total_transactions}",
        f"Processed:              {results.processed_transactions}",
        f"Successful validations: {results.successful_validations}",
        f"Skipped (not triggered): {results.skipped_transactions}",
        f"Replay failures:        {results.replay_failures}",
        f"Unknown errors:         {results.unknown_errors}",
        f"Assertion failures:     {results.assertion_failures}",
        f"Success rate:           {success_rate(results):.2f}% (skipped excluded)",
    ]
    if results.assertion_failures > 0:
        lines.append("!!! PROTOCOL VIOLATIONS DETECTED: "
                     f"{results.assertion_failures} transaction(s) failed the assertion !!!")
        lines.extend(f"!!!   {h}" for h in results.violations)
    else:
        lines.append("No protocol violations detected.")
    return lines


def log_summary(results: BacktestResults) -> None:
    for line in render_summary(results):
        if line.startswith("!!!"):
            log.error(line)
        else:
            log.info(line)
