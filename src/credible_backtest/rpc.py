"""
JSON-RPC 2.0 client used by the prober, the fetcher and the validator.

- One pooled adapter (Keep-Alive) shared by a `requests.Session` per thread,
  so the concurrent block fetchers reuse connections without sharing a session.
- Each call has a fixed timeout (30s by default). A timeout, connection error,
  bad HTTP status or non-JSON body raises RpcTransportError; a JSON-RPC error
  object raises RpcError. Neither is retried.
- HTTP 429 is the one exception: it backs off on Retry-After / exponential
  delay, a bounded number of times, before giving up.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from .errors import RpcError, RpcTransportError
from .utils import to_block_hex

log = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601
UNSUPPORTED_MARKERS = (
    "method not found",
    "does not exist",
    "not available",
    "unknown method",
    "not supported",
)

CALL_TRACER = {"tracer": "callTracer"}


def is_method_unsupported(error: Exception) -> bool:
    """True when the endpoint says it does not implement the method at all."""
    if not isinstance(error, RpcError):
        return False
    if error.code == METHOD_NOT_FOUND:
        return True
    msg = (error.message or "").lower()
    return any(marker in msg for marker in UNSUPPORTED_MARKERS)


class RpcClient:
    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        *,
        pool_size: int = 32,
        rate_limit_retries: int = 4,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.rate_limit_retries = rate_limit_retries
        self._shared_session = session
        self._adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The calling thread's session; all of them draw from one connection pool."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.mount("http://", self._adapter)
            session.mount("https://", self._adapter)
            self._local.session = session
        return session

    def call(self, method: str, params: Optional[list] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []}
        backoff = 0.5
        for attempt in range(self.rate_limit_retries + 1):
            try:
                r = self.session.post(self.url, json=payload, timeout=self.timeout)
            except requests.exceptions.Timeout as e:
                raise RpcTransportError(method, f"timed out after {self.timeout:g}s") from e
            except requests.exceptions.RequestException as e:
                raise RpcTransportError(method, str(e)) from e

            if r.status_code == 429 and attempt < self.rate_limit_retries:
                ra = r.headers.get("Retry-After")
                delay = float(ra) if ra and ra.isdigit() else backoff
                log.debug("rate limited on %s, sleeping %.1fs", method, delay)
                time.sleep(delay)
                backoff = min(backoff * 2, 8.0)
                continue

            try:
                r.raise_for_status()
                resp = r.json()
            except requests.exceptions.HTTPError as e:
                raise RpcTransportError(method, f"HTTP {r.status_code}") from e
            except ValueError as e:
                raise RpcTransportError(method, "invalid JSON response") from e

            if not isinstance(resp, dict):
                raise RpcTransportError(method, "unexpected response shape")
            if resp.get("error") is not None:
                err = resp["error"]
                if isinstance(err, dict):
                    raise RpcError(method, err.get("code"), str(err.get("message", "")))
                raise RpcError(method, None, str(err))
            return resp.get("result")

        raise RpcTransportError(method, "rate limited")

    # ---------- Standard methods ----------
    def get_block_by_number(self, number: int, full_transactions: bool = True) -> Optional[Dict[str, Any]]:
        return self.call("eth_getBlockByNumber", [to_block_hex(number), full_transactions])

    def get_transaction_by_hash(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.call("eth_getTransactionByHash", [tx_hash])

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def get_balance(self, address: str, block: int) -> int:
        return int(self.call("eth_getBalance", [address, to_block_hex(block)]) or "0x0", 16)

    # ---------- Trace methods ----------
    def trace_filter(self, from_block: int, to_block: int, to_address: str) -> List[Dict[str, Any]]:
        flt = {
            "fromBlock": to_block_hex(from_block),
            "toBlock": to_block_hex(to_block),
            "toAddress": [to_address],
        }
        return self.call("trace_filter", [flt]) or []

    def debug_trace_block_by_number(self, number: int) -> List[Dict[str, Any]]:
        return self.call("debug_traceBlockByNumber", [to_block_hex(number), CALL_TRACER]) or []

    def debug_trace_transaction(self, tx_hash: str) -> Dict[str, Any]:
        return self.call("debug_traceTransaction", [tx_hash, CALL_TRACER]) or {}
