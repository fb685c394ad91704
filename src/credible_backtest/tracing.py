"""
Internal-call detection, one strategy per trace capability.

A strategy answers "which transactions reached the target through an
internal call". `trace_filter` answers for a whole batch range at once; the
debug_* tracers answer per block or per transaction from the callTracer tree.
Errors are logged and cost only the block/transaction they came from.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from .errors import BacktestError
from .models import TraceCapability
from .rpc import RpcClient
from .utils import same_address

log = logging.getLogger(__name__)


# ---------- Call tracer walking ----------
def calls_target(node: Optional[Dict[str, Any]], target: str) -> bool:
    """DFS over a callTracer frame; True if any frame at any depth calls `target`."""
    if not isinstance(node, dict):
        return False
    if same_address(node.get("to"), target):
        return True
    for child in node.get("calls", []) or []:
        if calls_target(child, target):
            return True
    return False


def _frame_tx_hash(frame: Dict[str, Any], txs: List[Dict[str, Any]], position: int) -> Optional[str]:
    tx_hash = frame.get("txHash") or frame.get("transactionHash")
    if isinstance(tx_hash, str) and tx_hash:
        return tx_hash.lower()
    if position < len(txs) and isinstance(txs[position].get("hash"), str):
        return txs[position]["hash"].lower() or None
    return None


# ---------- Strategies ----------
class TraceStrategy:
    capability = TraceCapability.DIRECT_CALLS_ONLY

    def batch_hashes(self, client: RpcClient, target: str, start: int, end: int) -> Set[str]:
        return set()

    def block_hashes(self, client: RpcClient, target: str, block_number: int, txs: List[Dict[str, Any]]) -> Set[str]:
        return set()


class TraceFilterStrategy(TraceStrategy):
    capability = TraceCapability.TRACE_FILTER

    def batch_hashes(self, client, target, start, end):
        try:
            traces = client.trace_filter(start, end, target)
        except BacktestError as e:
            log.warning("trace_filter failed for blocks %d-%d, internal calls skipped: %s", start, end, e)
            return set()
        hashes = set()
        for trace in traces if isinstance(traces, list) else []:
            if not isinstance(trace, dict):
                continue
            tx_hash = trace.get("transactionHash")
            if not isinstance(tx_hash, str) or not tx_hash:
                # block/uncle reward traces carry no transaction
                continue
            if same_address((trace.get("action") or {}).get("to"), target):
                hashes.add(tx_hash.lower())
        return hashes


class DebugTraceBlockStrategy(TraceStrategy):
    capability = TraceCapability.DEBUG_TRACE_BLOCK_BY_NUMBER

    def block_hashes(self, client, target, block_number, txs):
        try:
            frames = client.debug_trace_block_by_number(block_number)
        except BacktestError as e:
            log.warning("debug_traceBlockByNumber failed for block %d, internal calls skipped: %s", block_number, e)
            return set()
        if not isinstance(frames, list):
            log.warning("debug_traceBlockByNumber returned %s for block %d, internal calls skipped", type(frames).__name__, block_number)
            return set()
        hashes = set()
        for position, frame in enumerate(frames):
            if not isinstance(frame, dict):
                log.warning("malformed trace frame in block %d position %d, skipped", block_number, position)
                continue
            if frame.get("error"):
                log.warning("trace error in block %d position %d: %s", block_number, position, frame["error"])
                continue
            if calls_target(frame.get("result"), target):
                tx_hash = _frame_tx_hash(frame, txs, position)
                if tx_hash:
                    hashes.add(tx_hash)
        return hashes


class DebugTraceTransactionStrategy(TraceStrategy):
    capability = TraceCapability.DEBUG_TRACE_TRANSACTION

    def block_hashes(self, client, target, block_number, txs):
        hashes = set()
        for tx in txs:
            tx_hash = (tx.get("hash") or "").lower()
            if not tx_hash or same_address(tx.get("to"), target):
                continue
            try:
                root = client.debug_trace_transaction(tx_hash)
            except BacktestError as e:
                log.warning("debug_traceTransaction failed for %s, skipped: %s", tx_hash, e)
                continue
            if calls_target(root, target):
                hashes.add(tx_hash)
        return hashes


class ReceiptLogStrategy(TraceStrategy):
    """No tracer at all: a log emitted by the target marks the transaction as touching it."""

    def block_hashes(self, client, target, block_number, txs):
        hashes = set()
        for tx in txs:
            tx_hash = (tx.get("hash") or "").lower()
            if not tx_hash or same_address(tx.get("to"), target):
                continue
            try:
                receipt = client.get_transaction_receipt(tx_hash) or {}
            except BacktestError as e:
                log.warning("receipt fetch failed for %s, skipped: %s", tx_hash, e)
                continue
            if any(same_address(lg.get("address"), target) for lg in receipt.get("logs", []) or []):
                hashes.add(tx_hash)
        return hashes


_STRATEGIES = {
    TraceCapability.TRACE_FILTER: TraceFilterStrategy,
    TraceCapability.DEBUG_TRACE_BLOCK_BY_NUMBER: DebugTraceBlockStrategy,
    TraceCapability.DEBUG_TRACE_TRANSACTION: DebugTraceTransactionStrategy,
    TraceCapability.DIRECT_CALLS_ONLY: TraceStrategy,
}


def strategy_for(capability: TraceCapability, receipt_log_fallback: bool = False) -> TraceStrategy:
    if capability is TraceCapability.DIRECT_CALLS_ONLY and receipt_log_fallback:
        return ReceiptLogStrategy()
    return _STRATEGIES[capability]()
