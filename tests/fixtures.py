import threading

from eth_abi import encode as abi_encode

from credible_backtest.errors import ExecutorError, RpcError
from credible_backtest.executor import CallResult
from credible_backtest.rpc import RpcClient

TARGET = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20
ROUTER = "0x" + "ef" * 20
SENDER = "0x" + "11" * 20


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_tx(n, to, block, index, *, frm=SENDER, value=0, data="0x", gas_price=100, eip1559=False):
    tx = {
        "hash": tx_hash(n),
        "from": frm,
        "to": to,
        "value": hex(value),
        "input": data,
        "blockNumber": hex(block),
        "transactionIndex": hex(index),
        "gasPrice": hex(gas_price),
        "gas": hex(21000),
    }
    if eip1559:
        tx["maxFeePerGas"] = hex(gas_price * 2)
        tx["maxPriorityFeePerGas"] = hex(2)
    return tx


def error_string(message: str) -> bytes:
    return bytes.fromhex("08c379a0") + abi_encode(["string"], [message])


def panic(code: int) -> bytes:
    return bytes.fromhex("4e487b71") + abi_encode(["uint256"], [code])


class FakeRpc(RpcClient):
    """In-memory JSON-RPC endpoint. Methods without a handler answer -32601."""

    def __init__(self, handlers=None):
        super().__init__("http://fake.rpc", session=object())
        self.handlers = dict(handlers or {})
        self.calls = []
        self._lock = threading.Lock()

    def call(self, method, params=None):
        with self._lock:
            self.calls.append((method, params))
        handler = self.handlers.get(method)
        if handler is None:
            raise RpcError(method, -32601, f"the method {method} does not exist/is not available")
        return handler(*(params or []))

    def count(self, method):
        return sum(1 for m, _ in self.calls if m == method)


class FakeChain:
    """Blocks of RPC-style transactions plus the call trees the tracers return."""

    def __init__(self):
        self.blocks = {}
        # tx hash -> callTracer root frame
        self.traces = {}

    def add(self, tx, *, internal_to=None):
        block = int(tx["blockNumber"], 16)
        self.blocks.setdefault(block, []).append(tx)
        frame = {"from": tx["from"], "to": tx["to"], "calls": []}
        if internal_to:
            frame["calls"].append({"from": tx["to"], "to": OTHER, "calls": [{"from": OTHER, "to": internal_to}]})
        self.traces[tx["hash"]] = frame
        return tx

    def get_block(self, block_hex, full=True):
        n = int(block_hex, 16)
        txs = self.blocks.get(n, [])
        return {
            "number": hex(n),
            "transactions": list(txs) if full else [t["hash"] for t in txs],
        }

    def get_tx(self, h):
        for txs in self.blocks.values():
            for tx in txs:
                if tx["hash"] == h:
                    return tx
        return None

    def debug_trace_block(self, block_hex, cfg):
        n = int(block_hex, 16)
        return [{"txHash": tx["hash"], "result": self.traces[tx["hash"]]} for tx in self.blocks.get(n, [])]

    def debug_trace_tx(self, h, cfg):
        return self.traces[h]

    def trace_filter(self, flt):
        lo, hi = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
        wanted = [a.lower() for a in flt["toAddress"]]
        out = []
        for n in range(lo, hi + 1):
            for tx in self.blocks.get(n, []):
                for frame in _walk(self.traces[tx["hash"]]):
                    if (frame.get("to") or "").lower() in wanted:
                        out.append({
                            "action": {"from": frame["from"], "to": frame["to"]},
                            "transactionHash": tx["hash"],
                            "blockNumber": n,
                        })
        return out

    def rpc(self, *trace_methods):
        handlers = {
            "eth_getBlockByNumber": self.get_block,
            "eth_getTransactionByHash": self.get_tx,
        }
        available = {
            "trace_filter": self.trace_filter,
            "debug_traceBlockByNumber": self.debug_trace_block,
            "debug_traceTransaction": self.debug_trace_tx,
        }
        for m in trace_methods:
            handlers[m] = available[m]
        return FakeRpc(handlers)


def _walk(frame):
    yield frame
    for child in frame.get("calls", []) or []:
        yield from _walk(child)


class FakeExecutor:
    """Scripted assertion host. `results` maps tx hash -> CallResult for the asserted run."""

    def __init__(self, results=None, *, balance=10 ** 18, base_fee=10, fail_fork=False):
        self.results = dict(results or {})
        self.balance = balance
        self._base_fee = base_fee
        self.fail_fork = fail_fork
        self.events = []
        self.attached = None

    def fork_by_transaction(self, tx_hash):
        if self.fail_fork:
            raise ExecutorError("fork failed")
        self.events.append(("fork_tx", tx_hash))
        self.attached = None

    def fork_by_block(self, block_number):
        self.events.append(("fork_block", block_number))
        self.attached = None

    def attach_assertion(self, adopter, creation_code, trigger_selector):
        self.events.append(("attach", adopter, creation_code, trigger_selector))
        self.attached = (adopter, trigger_selector)

    def balance_of(self, address):
        return self.balance

    def base_fee(self):
        return self._base_fee

    def set_base_fee(self, fee):
        self.events.append(("base_fee", fee))
        self._base_fee = fee

    def execute(self, sender, to, value, data, gas_limit, gas_price, traced=False):
        self.events.append(("execute", sender, to, value, gas_limit, gas_price, traced, self.attached is not None))
        if traced or self.attached is None:
            return CallResult(True)
        return self.results.get(self._last_fork(), CallResult(True))

    def _last_fork(self):
        for event in reversed(self.events):
            if event[0] == "fork_tx":
                return event[1]
        return None
