"""
Interface to the assertion-execution host (the PhEvm-backed test VM).

The backtesting core only ever forks, attaches an assertion, executes a call
and inspects the result. How the host forks state or diffs storage is its own
business; implementations of this protocol adapt a concrete host.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class CallResult:
    success: bool
    return_data: bytes = b""


@runtime_checkable
class AssertionExecutor(Protocol):
    def fork_by_transaction(self, tx_hash: str) -> None:
        """Fork to the state immediately before `tx_hash` (earlier txs in its block applied)."""

    def fork_by_block(self, block_number: int) -> None:
        """Fork to the start of `block_number`."""

    def attach_assertion(self, adopter: str, creation_code: bytes, trigger_selector: bytes) -> None:
        """Attach an assertion to `adopter` for the next execution only."""

    def balance_of(self, address: str) -> int:
        ...

    def base_fee(self) -> int:
        ...

    def set_base_fee(self, fee: int) -> None:
        ...

    def execute(
        self,
        sender: str,
        to: str,
        value: int,
        data: bytes,
        gas_limit: int,
        gas_price: int,
        traced: bool = False,
    ) -> CallResult:
        ...
