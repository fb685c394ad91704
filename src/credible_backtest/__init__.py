from .backtest import run_backtest
from .classifier import DEFAULT_RULES, RevertClassifier
from .config import BacktestConfig
from .errors import BacktestError, ConfigError, ExecutorError, ParseError, RpcError, RpcTransportError
from .executor import AssertionExecutor, CallResult
from .fetcher import TransactionFetcher
from .models import BacktestResults, TraceCapability, TransactionRecord, ValidationOutcome, ValidationResult
from .parser import decode_revert_reason, extract_data_line, parse_multiple_transactions, records_from_fetcher_output
from .report import render_summary, success_rate
from .rpc import RpcClient
from .validator import ReplayValidator

__version__ = "0.1.0"
