"""
Trace-capability probing.

Each probe issues one real request for its method and classifies the answer:
supported (no error), unsupported (method-not-found style error), error
(anything else, including transport failures), or skipped (the probe lacked
an input it needs). Probes are kept in priority order; the fetcher walks them
lazily and stops at the first supported one, the harness runs all of them.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from .errors import BacktestError
from .models import TraceCapability
from .rpc import RpcClient, is_method_unsupported

log = logging.getLogger(__name__)

SAMPLE_TX_LOOKBACK = 5


class ProbeStatus(Enum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ProbeReport:
    capability: TraceCapability
    status: ProbeStatus
    detail: str = ""

    @property
    def method(self) -> str:
        return self.capability.rpc_method or ""

    def render(self) -> str:
        if self.status is ProbeStatus.ERROR:
            return f"{self.method}: error (see response for details)"
        if self.status is ProbeStatus.SKIPPED:
            return f"{self.method}: skipped ({self.detail})"
        return f"{self.method}: {self.status.value}"


def classify_call(capability: TraceCapability, call: Callable[[], object]) -> ProbeReport:
    try:
        call()
    except BacktestError as e:
        if is_method_unsupported(e):
            return ProbeReport(capability, ProbeStatus.UNSUPPORTED, str(e))
        return ProbeReport(capability, ProbeStatus.ERROR, str(e))
    return ProbeReport(capability, ProbeStatus.SUPPORTED)


def find_sample_transaction(client: RpcClient, block_number: int, lookback: int = SAMPLE_TX_LOOKBACK) -> Optional[str]:
    """First transaction hash in `block_number` or the blocks just before it."""
    for i in range(lookback):
        n = block_number - i
        if n < 0:
            break
        try:
            block = client.get_block_by_number(n, full_transactions=False)
        except BacktestError as e:
            log.debug("sample tx lookup failed for block %d: %s", n, e)
            continue
        txs = (block or {}).get("transactions") or []
        if txs:
            first = txs[0]
            return first["hash"] if isinstance(first, dict) else first
    return None


# ---------- Probes ----------
class TraceFilterProbe:
    capability = TraceCapability.TRACE_FILTER

    def run(self, client: RpcClient, block_number: int, target: Optional[str]) -> ProbeReport:
        if not target:
            return ProbeReport(self.capability, ProbeStatus.SKIPPED, "no --target-contract provided")
        return classify_call(self.capability, lambda: client.trace_filter(block_number, block_number, target))


class DebugTraceBlockProbe:
    capability = TraceCapability.DEBUG_TRACE_BLOCK_BY_NUMBER

    def run(self, client: RpcClient, block_number: int, target: Optional[str]) -> ProbeReport:
        return classify_call(self.capability, lambda: client.debug_trace_block_by_number(block_number))


class DebugTraceTransactionProbe:
    capability = TraceCapability.DEBUG_TRACE_TRANSACTION

    def run(self, client: RpcClient, block_number: int, target: Optional[str]) -> ProbeReport:
        tx_hash = find_sample_transaction(client, block_number)
        if tx_hash is None:
            return ProbeReport(self.capability, ProbeStatus.SKIPPED, "no tx hash found in recent blocks")
        return classify_call(self.capability, lambda: client.debug_trace_transaction(tx_hash))


DEFAULT_PROBES = (TraceFilterProbe(), DebugTraceBlockProbe(), DebugTraceTransactionProbe())


def iter_probes(client: RpcClient, block_number: int, target: Optional[str] = None, probes: Sequence = DEFAULT_PROBES) -> Iterable[ProbeReport]:
    for probe in probes:
        yield probe.run(client, block_number, target)


def probe_all(client: RpcClient, block_number: int, target: Optional[str] = None, probes: Sequence = DEFAULT_PROBES) -> List[ProbeReport]:
    return list(iter_probes(client, block_number, target, probes))


def select_capability(client: RpcClient, block_number: int, target: Optional[str] = None, probes: Sequence = DEFAULT_PROBES) -> TraceCapability:
    """Best supported capability; stops probing at the first success."""
    for report in iter_probes(client, block_number, target, probes):
        if report.status is ProbeStatus.SUPPORTED:
            log.info("Using %s for internal call detection", report.method)
            return report.capability
        log.info("%s not usable: %s", report.method, report.status.value)
        if report.detail:
            log.debug("%s", report.detail)
    log.warning("No trace method available; internal calls to the target will not be detected")
    return TraceCapability.DIRECT_CALLS_ONLY
