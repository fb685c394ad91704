"""Exception hierarchy shared by the fetcher, prober and replay engine."""

from typing import Optional


class BacktestError(Exception):
    """Base class for every error raised by credible_backtest."""


class ConfigError(BacktestError):
    """Invalid run parameters. Raised before any network call."""


class ParseError(BacktestError):
    """Malformed fetcher payload or record field."""


class RpcError(BacktestError):
    """The endpoint answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"RPC error from {method}: [{code}] {message}")


class RpcTransportError(BacktestError):
    """Timeout, connection failure, bad HTTP status or non-JSON body."""

    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"RPC request failed: {method}: {reason}")


class ExecutorError(BacktestError):
    """The assertion executor could not fork, attach or execute."""
