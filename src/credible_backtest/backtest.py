"""
Backtest orchestration: fetch -> replay each transaction -> aggregate.

Transactions are replayed strictly one after another, in chain order. Each
classification is logged as it happens and the summary is logged at the end.
"""

import logging
from typing import Optional, Sequence

from .config import BacktestConfig
from .executor import AssertionExecutor
from .fetcher import TransactionFetcher
from .models import BacktestResults, TransactionRecord
from .report import describe, is_consistent, log_summary, record_result
from .rpc import RpcClient
from .validator import Classifier, ReplayValidator

log = logging.getLogger(__name__)


def fetch_records(config: BacktestConfig, client: RpcClient) -> Sequence[TransactionRecord]:
    fetcher = TransactionFetcher(
        client,
        config.target_contract,
        batch_size=config.batch_size,
        max_concurrent=config.max_concurrent,
        detect_internal_calls=config.detect_internal_calls,
    )
    return fetcher.fetch(config.start_block, config.end_block).records


def run_backtest(
    config: BacktestConfig,
    executor: AssertionExecutor,
    client: Optional[RpcClient] = None,
    records: Optional[Sequence[TransactionRecord]] = None,
    classifier: Optional[Classifier] = None,
) -> BacktestResults:
    """Backtest `config` and return the counters.

    `records` skips the fetch, e.g. when transactions come from an external
    fetcher's output (see `parser.records_from_fetcher_output`).
    """
    log.info(
        "Backtesting %s over blocks %d to %d",
        config.target_contract, config.start_block, config.end_block,
    )
    if records is None:
        client = client or RpcClient(config.rpc_url, timeout=config.rpc_timeout)
        records = fetch_records(config, client)

    results = BacktestResults(total_transactions=len(records))
    validator = ReplayValidator(executor, config, classifier)
    for i, record in enumerate(records, 1):
        result = validator.validate(record)
        record_result(results, record, result)
        line = f"({i}/{len(records)}) {describe(record, result)}"
        if result.is_protocol_violation:
            log.error(line)
        else:
            log.info(line)

    if not is_consistent(results):
        log.error("Result counters do not add up: %s", results)
    log_summary(results)
    return results
