"""
Fetch every transaction in a block range that touched a target contract.

Blocks are processed in batches of `batch_size`. Inside a batch, at most
`max_concurrent` block fetches are in flight; a new one starts as soon as one
finishes. A batch fully drains before the next starts, and its results are
merged in block order whatever order the fetches completed in.

A transaction matches when its `to` is the target (direct call) or, with a
trace capability available, when its execution trace reaches the target at
any depth. The capability is chosen once per fetcher and reused.

A block that fails to fetch or parse is logged and skipped; the rest of the
batch carries on. When only the trace for a block fails, its direct calls
still count.
"""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, TextIO

from .capability import select_capability
from .errors import ConfigError
from .models import TraceCapability, TransactionRecord
from .parser import DATA_MARKER
from .progress import FetchProgress
from .rpc import RpcClient
from .tracing import TraceFilterStrategy, TraceStrategy, strategy_for
from .utils import hex_to_bytes, hex_to_int, parse_address, parse_uint, same_address

log = logging.getLogger(__name__)

OUTPUT_FORMATS = ("simple", "json")


@dataclass
class BlockResult:
    block_number: int
    ok: bool
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    matched: Dict[str, TransactionRecord] = field(default_factory=dict)

    @property
    def tx_count(self) -> int:
        return len(self.transactions)


@dataclass
class FetchResult:
    records: List[TransactionRecord]
    capability: TraceCapability
    blocks: List[BlockResult]
    duration: float = 0.0

    @property
    def blocks_processed(self) -> int:
        return sum(1 for b in self.blocks if b.ok)

    @property
    def blocks_failed(self) -> int:
        return sum(1 for b in self.blocks if not b.ok)


def record_from_rpc_tx(tx: Dict[str, Any], block_number: Optional[int] = None) -> TransactionRecord:
    """Normalise an RPC transaction object; hex quantities become ints."""
    if block_number is None:
        block_number = hex_to_int(tx.get("blockNumber"))
    return TransactionRecord(
        hash=tx["hash"].lower(),
        from_address=parse_address(tx.get("from")),
        to=parse_address(tx.get("to")),
        value=parse_uint(tx.get("value")),
        data=hex_to_bytes(tx.get("input") or tx.get("data")),
        block_number=block_number,
        transaction_index=parse_uint(tx.get("transactionIndex")),
        gas_price=parse_uint(tx.get("gasPrice")),
        gas_limit=parse_uint(tx.get("gas")),
        max_fee_per_gas=parse_uint(tx.get("maxFeePerGas")),
        max_priority_fee_per_gas=parse_uint(tx.get("maxPriorityFeePerGas")),
    )


def validate_range(start_block: int, end_block: int) -> None:
    if start_block < 0 or end_block < 0:
        raise ConfigError("Block numbers must be positive integers")
    if start_block > end_block:
        raise ConfigError("Start block must be less than or equal to end block")


class TransactionFetcher:
    def __init__(
        self,
        client: RpcClient,
        target_contract: str,
        batch_size: int = 10,
        max_concurrent: int = 5,
        *,
        detect_internal_calls: bool = True,
        receipt_log_fallback: bool = False,
        capability: Optional[TraceCapability] = None,
        show_progress: bool = False,
    ):
        if batch_size < 1:
            raise ConfigError("batch size must be >= 1")
        if max_concurrent < 1:
            raise ConfigError("max concurrent must be >= 1")
        try:
            self.target = parse_address(target_contract)
        except ValueError as e:
            raise ConfigError(f"invalid target contract: {target_contract!r}") from e
        self.client = client
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.detect_internal_calls = detect_internal_calls
        self.receipt_log_fallback = receipt_log_fallback
        self.show_progress = show_progress
        self._capability = capability if detect_internal_calls else TraceCapability.DIRECT_CALLS_ONLY

    def capability_for(self, block_number: int) -> TraceCapability:
        if self._capability is None:
            self._capability = select_capability(self.client, block_number, self.target)
        return self._capability

    # ---------- Per block ----------
    def _fetch_block(self, block_number: int, strategy: TraceStrategy) -> BlockResult:
        try:
            block = self.client.get_block_by_number(block_number, full_transactions=True)
            if not block:
                log.warning("No block data for block %d, skipped", block_number)
                return BlockResult(block_number, ok=False)
            number = hex_to_int(block.get("number")) if block.get("number") else block_number
            txs = [tx for tx in block.get("transactions") or [] if isinstance(tx, dict)]

            matched: Dict[str, TransactionRecord] = {}
            for tx in txs:
                if same_address(tx.get("to"), self.target):
                    rec = record_from_rpc_tx(tx, number)
                    matched[rec.hash] = rec
        except Exception as e:
            log.warning("Failed to fetch block %d, skipped: %s", block_number, e)
            return BlockResult(block_number, ok=False)

        for h, tx in self._internal_calls(strategy, number, txs).items():
            if h not in matched:
                try:
                    matched[h] = record_from_rpc_tx(tx, number)
                except Exception as e:
                    log.warning("Malformed transaction %s in block %d, skipped: %s", h, number, e)

        if matched:
            log.info("  Block %d: found %d transactions", number, len(matched))
        return BlockResult(block_number, ok=True, transactions=txs, matched=matched)

    def _internal_calls(self, strategy: TraceStrategy, block_number: int, txs: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Transactions of the block that reach the target internally. A trace failure costs only these."""
        try:
            internal = strategy.block_hashes(self.client, self.target, block_number, txs)
        except Exception as e:
            log.warning("Internal call detection failed for block %d, direct calls kept: %s", block_number, e)
            return {}
        if not internal:
            return {}
        return {
            tx["hash"].lower(): tx
            for tx in txs
            if isinstance(tx.get("hash"), str) and tx["hash"].lower() in internal
        }

    def _resolve_hash(self, tx_hash: str) -> Optional[TransactionRecord]:
        try:
            tx = self.client.get_transaction_by_hash(tx_hash)
            if not tx:
                log.warning("Transaction %s not found, skipped", tx_hash)
                return None
            return record_from_rpc_tx(tx)
        except Exception as e:
            log.warning("Failed to fetch transaction %s, skipped: %s", tx_hash, e)
            return None

    # ---------- Per batch ----------
    def _process_batch(self, batch_start: int, batch_end: int, strategy: TraceStrategy) -> List[BlockResult]:
        block_numbers = list(range(batch_start, batch_end + 1))
        with ThreadPoolExecutor(max_workers=self.max_concurrent) as ex:
            # map() yields in submission order, so results come back in block order
            results = list(ex.map(lambda n: self._fetch_block(n, strategy), block_numbers))

        if isinstance(strategy, TraceFilterStrategy):
            self._merge_batch_traces(results, strategy, batch_start, batch_end)
        return results

    def _merge_batch_traces(self, results: List[BlockResult], strategy: TraceStrategy, batch_start: int, batch_end: int) -> None:
        try:
            internal = strategy.batch_hashes(self.client, self.target, batch_start, batch_end)
        except Exception as e:
            log.warning("Internal call detection failed for blocks %d-%d, direct calls kept: %s", batch_start, batch_end, e)
            return
        if not internal:
            return
        by_hash = {}
        for result in results:
            for tx in result.transactions:
                if isinstance(tx.get("hash"), str):
                    by_hash[tx["hash"].lower()] = (result, tx)
        by_block = {r.block_number: r for r in results}

        for h in sorted(internal):
            if any(h in r.matched for r in results):
                continue
            if h in by_hash:
                result, tx = by_hash[h]
                try:
                    result.matched[h] = record_from_rpc_tx(tx, result.block_number)
                except Exception as e:
                    log.warning("Malformed transaction %s, skipped: %s", h, e)
                continue
            rec = self._resolve_hash(h)
            if rec is not None:
                owner = by_block.get(rec.block_number)
                if owner is not None:
                    owner.matched[h] = rec

    # ---------- Whole range ----------
    def fetch(self, start_block: int, end_block: int) -> FetchResult:
        validate_range(start_block, end_block)
        started = time.time()
        capability = self.capability_for(start_block)
        strategy = strategy_for(capability, self.receipt_log_fallback)
        if capability is TraceCapability.DIRECT_CALLS_ONLY:
            if self.receipt_log_fallback:
                log.warning("Fetching in degraded mode: internal calls detected from receipt logs only")
            else:
                log.warning("Fetching in degraded mode: direct calls only")

        log.info(
            "Blocks: %d to %d (batch size: %d, max concurrent: %d)",
            start_block, end_block, self.batch_size, self.max_concurrent,
        )
        progress = FetchProgress(end_block - start_block + 1) if self.show_progress else None

        blocks: List[BlockResult] = []
        for batch_id, batch_start in enumerate(range(start_block, end_block + 1, self.batch_size)):
            batch_end = min(batch_start + self.batch_size - 1, end_block)
            log.debug("Processing batch %d: blocks %d to %d", batch_id, batch_start, batch_end)
            batch = self._process_batch(batch_start, batch_end, strategy)
            found = sum(len(b.matched) for b in batch)
            if found:
                log.info("  Batch %d: found %d transactions", batch_id, found)
            blocks.extend(batch)
            if progress is not None:
                progress.batch_done(len(batch), found, failed=sum(1 for b in batch if not b.ok))
        if progress is not None:
            progress.close()

        seen: Set[str] = set()
        records = []
        for b in blocks:
            for h, rec in b.matched.items():
                if h not in seen:
                    seen.add(h)
                    records.append(rec)
        records.sort(key=lambda r: r.sort_key)

        result = FetchResult(records=records, capability=capability, blocks=blocks, duration=time.time() - started)
        log_fetch_stats(result)
        return result


def log_fetch_stats(result: FetchResult) -> None:
    log.info("Fetch completed in %.1fs", result.duration)
    log.info("Processed %d blocks, found %d transactions", result.blocks_processed, len(result.records))
    if result.blocks_failed:
        log.warning("%d blocks could not be fetched and were skipped", result.blocks_failed)
    if result.duration > 0:
        log.info(
            "Average: %.2f blocks/sec, %.2f transactions/sec",
            result.blocks_processed / result.duration,
            len(result.records) / result.duration,
        )


# ---------- Output ----------
def format_simple(records: List[TransactionRecord]) -> str:
    if not records:
        return "0"
    parts = [str(len(records))]
    for rec in records:
        parts.extend(rec.simple_fields())
    return "|".join(parts)


def format_json(records: List[TransactionRecord]) -> str:
    return json.dumps([rec.to_json_obj() for rec in records], separators=(",", ":"))


def format_payload(records: List[TransactionRecord], output_format: str = "simple") -> str:
    if output_format == "json":
        return format_json(records)
    if output_format == "simple":
        return format_simple(records)
    raise ConfigError(f"unknown output format: {output_format!r}")


def write_payload(stream: TextIO, records: List[TransactionRecord], output_format: str = "simple") -> None:
    stream.write(f"{DATA_MARKER}START\n")
    stream.write(f"{DATA_MARKER}{format_payload(records, output_format)}")
    stream.write(f"{DATA_MARKER}END\n")
    stream.flush()


def format_block_summaries(blocks: List[BlockResult]) -> List[str]:
    lines = ["BLOCK_SUMMARY_FORMATTED:START"]
    for b in sorted(blocks, key=lambda b: b.block_number):
        triggered = len(b.matched)
        if triggered:
            lines.append(
                f"=== BLOCK {b.block_number} SUMMARY | Triggered: {triggered} | "
                f"Not Triggered: {b.tx_count - triggered} | Total: {b.tx_count} ==="
            )
        else:
            lines.append(f"=== BLOCK {b.block_number} | Total TXs: {b.tx_count} ===")
    lines.append("BLOCK_SUMMARY_FORMATTED:END")
    return lines
