import pytest

from credible_backtest.config import BacktestConfig

from .fixtures import TARGET


@pytest.fixture
def config():
    return BacktestConfig(
        target_contract=TARGET,
        end_block=110,
        block_range=11,
        assertion_bytecode=b"\x60\x80",
        constructor_args=b"\x00\x01",
        trigger_selector=b"\xa9\x05\x9c\xbb",
        rpc_url="http://fake.rpc",
        batch_size=4,
        max_concurrent=2,
    )
