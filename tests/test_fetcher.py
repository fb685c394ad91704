import io
import threading
import time

import pytest

from credible_backtest.errors import ConfigError, RpcTransportError
from credible_backtest.fetcher import TransactionFetcher, format_block_summaries, format_payload, write_payload
from credible_backtest.models import TraceCapability
from credible_backtest.parser import extract_data_line, parse_multiple_transactions, records_from_fetcher_output

from .fixtures import ROUTER, TARGET, FakeChain, FakeRpc, make_tx, tx_hash


@pytest.fixture
def chain():
    chain = FakeChain()
    chain.add(make_tx(1, TARGET, 100, 0, value=5))
    chain.add(make_tx(2, ROUTER, 100, 1), internal_to=TARGET)
    chain.add(make_tx(3, ROUTER, 103, 0))
    chain.add(make_tx(4, TARGET.upper().replace("0X", "0x"), 105, 2, eip1559=True))
    chain.add(make_tx(5, ROUTER, 107, 0), internal_to=TARGET)
    return chain


def _fetch(rpc, start=100, end=110, **kwargs):
    kwargs.setdefault("batch_size", 4)
    kwargs.setdefault("max_concurrent", 2)
    return TransactionFetcher(rpc, TARGET, **kwargs).fetch(start, end)


def _hashes(result):
    return [r.hash for r in result.records]


ALL = [tx_hash(1), tx_hash(2), tx_hash(4), tx_hash(5)]
DIRECT = [tx_hash(1), tx_hash(4)]


class TestInternalCallDetection:
    def test_direct_calls_only_without_trace_support(self, chain):
        result = _fetch(chain.rpc())
        assert result.capability is TraceCapability.DIRECT_CALLS_ONLY
        assert _hashes(result) == DIRECT

    def test_trace_filter(self, chain):
        rpc = chain.rpc("trace_filter", "debug_traceBlockByNumber")
        result = _fetch(rpc)
        assert result.capability is TraceCapability.TRACE_FILTER
        assert _hashes(result) == ALL
        # one probe + one call per batch (100-103, 104-107, 108-110)
        assert rpc.count("trace_filter") == 1 + 3
        assert rpc.count("debug_traceBlockByNumber") == 0

    def test_falls_back_to_debug_trace_block_by_number(self, chain):
        rpc = chain.rpc("debug_traceBlockByNumber")
        result = _fetch(rpc)
        assert result.capability is TraceCapability.DEBUG_TRACE_BLOCK_BY_NUMBER
        assert _hashes(result) == ALL
        # trace_filter is tried once for the whole run, not per batch
        assert rpc.count("trace_filter") == 1

    def test_falls_back_to_debug_trace_transaction(self, chain):
        rpc = chain.rpc("debug_traceTransaction")
        result = _fetch(rpc)
        assert result.capability is TraceCapability.DEBUG_TRACE_TRANSACTION
        assert _hashes(result) == ALL
        traced = {params[0] for method, params in rpc.calls if method == "debug_traceTransaction"}
        # direct calls never need a trace
        assert tx_hash(4) not in traced

    def test_receipt_log_fallback(self, chain):
        rpc = chain.rpc()
        rpc.handlers["eth_getTransactionReceipt"] = lambda h: {
            "logs": [{"address": TARGET.upper().replace("0X", "0x")}] if h == tx_hash(5) else []
        }
        result = _fetch(rpc, receipt_log_fallback=True)
        assert _hashes(result) == [tx_hash(1), tx_hash(4), tx_hash(5)]

    def test_internal_detection_can_be_disabled(self, chain):
        rpc = chain.rpc("trace_filter")
        result = _fetch(rpc, detect_internal_calls=False)
        assert _hashes(result) == DIRECT
        assert rpc.count("trace_filter") == 0

    def test_capability_selected_once_per_fetcher(self, chain):
        rpc = chain.rpc("debug_traceBlockByNumber")
        fetcher = TransactionFetcher(rpc, TARGET, 4, 2)
        fetcher.fetch(100, 103)
        fetcher.fetch(104, 110)
        assert rpc.count("trace_filter") == 1


class TestFailureIsolation:
    def test_bad_block_is_skipped(self, chain):
        rpc = chain.rpc("debug_traceBlockByNumber")
        good = rpc.handlers["eth_getBlockByNumber"]

        def flaky(block_hex, full=True):
            if int(block_hex, 16) == 105 and full:
                raise RpcTransportError("eth_getBlockByNumber", "timed out after 30s")
            return good(block_hex, full)

        rpc.handlers["eth_getBlockByNumber"] = flaky
        result = _fetch(rpc)
        assert _hashes(result) == [tx_hash(1), tx_hash(2), tx_hash(5)]
        assert result.blocks_failed == 1
        assert result.blocks_processed == 10

    def test_malformed_block_is_skipped(self, chain):
        rpc = chain.rpc()
        good = rpc.handlers["eth_getBlockByNumber"]

        def garbage(block_hex, full=True):
            if int(block_hex, 16) == 100 and full:
                return {"number": "0x64", "transactions": [{"to": TARGET}]}
            return good(block_hex, full)

        rpc.handlers["eth_getBlockByNumber"] = garbage
        result = _fetch(rpc)
        assert _hashes(result) == [tx_hash(4)]

    def test_trace_filter_hash_resolved_when_block_missing(self, chain):
        rpc = chain.rpc("trace_filter")
        good = rpc.handlers["eth_getBlockByNumber"]

        def flaky(block_hex, full=True):
            if int(block_hex, 16) == 107:
                raise RpcTransportError("eth_getBlockByNumber", "connection reset")
            return good(block_hex, full)

        rpc.handlers["eth_getBlockByNumber"] = flaky
        result = _fetch(rpc)
        assert tx_hash(5) in _hashes(result)
        assert rpc.count("eth_getTransactionByHash") == 1

    def test_trace_errors_keep_direct_results(self, chain):
        rpc = chain.rpc("debug_traceBlockByNumber")
        calls = {"n": 0}
        good = rpc.handlers["debug_traceBlockByNumber"]

        def first_ok_then_fail(block_hex, cfg):
            calls["n"] += 1
            if calls["n"] == 1:
                return good(block_hex, cfg)
            raise RpcTransportError("debug_traceBlockByNumber", "timed out after 30s")

        rpc.handlers["debug_traceBlockByNumber"] = first_ok_then_fail
        result = _fetch(rpc, max_concurrent=1)
        assert _hashes(result) == DIRECT

    def test_null_hash_skips_only_its_block(self, chain):
        rpc = chain.rpc()
        good = rpc.handlers["eth_getBlockByNumber"]

        def null_hash(block_hex, full=True):
            if int(block_hex, 16) == 100 and full:
                return {"number": "0x64", "transactions": [{"hash": None, "to": TARGET}]}
            return good(block_hex, full)

        rpc.handlers["eth_getBlockByNumber"] = null_hash
        result = _fetch(rpc)
        assert _hashes(result) == [tx_hash(4)]
        assert result.blocks_failed == 1

    @pytest.mark.parametrize("reply", [[None], ["frame"], {"result": {}}, [{"txHash": None, "result": None}]])
    def test_malformed_trace_keeps_direct_calls(self, chain, reply):
        rpc = chain.rpc("debug_traceBlockByNumber")
        good = rpc.handlers["debug_traceBlockByNumber"]

        def bad_block_100(block_hex, cfg):
            if int(block_hex, 16) == 100:
                return reply
            return good(block_hex, cfg)

        rpc.handlers["debug_traceBlockByNumber"] = bad_block_100
        result = _fetch(rpc, capability=TraceCapability.DEBUG_TRACE_BLOCK_BY_NUMBER)
        assert _hashes(result) == [tx_hash(1), tx_hash(4), tx_hash(5)]
        assert result.blocks_failed == 0

    def test_tracer_crash_keeps_direct_calls(self, chain):
        rpc = chain.rpc("debug_traceTransaction")

        def crash(h, cfg):
            raise AttributeError("tracer blew up")

        rpc.handlers["debug_traceTransaction"] = crash
        result = _fetch(rpc, capability=TraceCapability.DEBUG_TRACE_TRANSACTION)
        assert _hashes(result) == DIRECT
        assert result.blocks_failed == 0


class TestConcurrency:
    def test_in_flight_capped_and_batches_sequential(self, chain):
        rpc = chain.rpc()
        good = rpc.handlers["eth_getBlockByNumber"]
        lock = threading.Lock()
        state = {"in_flight": 0, "peak": 0, "events": []}

        def slow(block_hex, full=True):
            n = int(block_hex, 16)
            with lock:
                state["in_flight"] += 1
                state["peak"] = max(state["peak"], state["in_flight"])
                state["events"].append(("start", n))
            time.sleep(0.01)
            with lock:
                state["in_flight"] -= 1
                state["events"].append(("end", n))
            return good(block_hex, full)

        rpc.handlers["eth_getBlockByNumber"] = slow
        result = _fetch(rpc, detect_internal_calls=False, batch_size=5, max_concurrent=3)
        assert state["peak"] <= 3
        assert _hashes(result) == DIRECT

        events = state["events"]
        last_end_of_first = max(events.index(("end", n)) for n in range(100, 105))
        # the second batch only starts once every block of the first has finished
        assert events.index(("start", 105)) > last_end_of_first

    def test_records_ordered_by_block_and_index(self):
        chain = FakeChain()
        chain.add(make_tx(9, TARGET, 12, 3))
        chain.add(make_tx(8, TARGET, 12, 1))
        chain.add(make_tx(7, TARGET, 10, 0))
        result = _fetch(chain.rpc(), 10, 12)
        assert [(r.block_number, r.transaction_index) for r in result.records] == [(10, 0), (12, 1), (12, 3)]


class TestArguments:
    def test_start_after_end_fails_before_network(self, chain):
        rpc = chain.rpc()
        with pytest.raises(ConfigError):
            TransactionFetcher(rpc, TARGET).fetch(10, 5)
        assert rpc.calls == []

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"max_concurrent": 0}])
    def test_bad_sizes(self, kwargs):
        with pytest.raises(ConfigError):
            TransactionFetcher(FakeRpc(), TARGET, **kwargs)

    def test_bad_target(self):
        with pytest.raises(ConfigError):
            TransactionFetcher(FakeRpc(), "0xnothex")


class TestOutput:
    def test_payload_round_trips_through_markers(self, chain):
        result = _fetch(chain.rpc("debug_traceBlockByNumber"))
        out = io.StringIO()
        out.write("Processing batch 0: blocks 100 to 103\n")
        write_payload(out, result.records)
        assert records_from_fetcher_output(out.getvalue()) == result.records

    def test_values_normalised_to_decimal(self, chain):
        result = _fetch(chain.rpc())
        payload = format_payload(result.records)
        fields = payload.split("|")
        assert fields[0] == "2"
        assert fields[4] == "5"
        assert fields[6] == "100"
        assert "0x" not in "".join(fields[6:12])
        eip1559 = parse_multiple_transactions(payload)[1]
        assert eip1559.max_fee_per_gas == 200
        assert eip1559.max_priority_fee_per_gas == 2

    def test_empty_result_emits_zero(self):
        out = io.StringIO()
        write_payload(out, [])
        assert extract_data_line(out.getvalue()) == "0"
        assert parse_multiple_transactions(extract_data_line(out.getvalue())) == []

    def test_json_payload(self, chain):
        result = _fetch(chain.rpc())
        out = io.StringIO()
        write_payload(out, result.records, "json")
        assert extract_data_line(out.getvalue()).startswith("[")
        assert records_from_fetcher_output(out.getvalue()) == result.records

    def test_unknown_format(self):
        with pytest.raises(ConfigError):
            format_payload([], "xml")

    def test_block_summaries(self, chain):
        result = _fetch(chain.rpc("debug_traceBlockByNumber"), 100, 101)
        assert format_block_summaries(result.blocks) == [
            "BLOCK_SUMMARY_FORMATTED:START",
            "=== BLOCK 100 SUMMARY | Triggered: 2 | Not Triggered: 0 | Total: 2 ===",
            "=== BLOCK 101 | Total TXs: 0 ===",
            "BLOCK_SUMMARY_FORMATTED:END",
        ]
