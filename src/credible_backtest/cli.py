"""
Command line tools.

  transaction-fetcher --rpc-url URL --target-contract ADDR --start-block N --end-block M
                      [--batch-size 10] [--max-concurrent 5] [--output-format simple|json]
                      [--detailed-blocks] [--receipt-log-fallback] [--no-internal-calls]

      Payload goes to stdout between TRANSACTION_DATA:START / TRANSACTION_DATA: /
      TRANSACTION_DATA:END; progress and logs go to stderr.

  trace-support-harness --rpc-url URL --block N [--target-contract ADDR]

      One line per trace method: supported | unsupported | error | skipped.

--rpc-url defaults to $ETH_RPC_URL.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .capability import probe_all
from .config import DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONCURRENT, DEFAULT_RPC_TIMEOUT, default_rpc_url
from .errors import ConfigError
from .fetcher import OUTPUT_FORMATS, TransactionFetcher, format_block_summaries, validate_range, write_payload
from .rpc import RpcClient
from .utils import parse_address

log = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def _block_number(value: str) -> int:
    if not value.isdigit():
        raise argparse.ArgumentTypeError("Block numbers must be positive integers")
    return int(value)


def _positive_int(value: str) -> int:
    if not value.isdigit() or int(value) < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return int(value)


def _address(value: str) -> str:
    try:
        return parse_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid address: {value!r}") from e


def _add_rpc_url(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--rpc-url", default=default_rpc_url(), help="RPC endpoint URL (default: $ETH_RPC_URL)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_RPC_TIMEOUT, help="per-call timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true")


# ---------- transaction-fetcher ----------
def build_fetcher_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transaction-fetcher",
        description="Fetch transactions that call a target contract, directly or internally.",
    )
    _add_rpc_url(parser)
    parser.add_argument("--target-contract", required=True, type=_address)
    parser.add_argument("--start-block", required=True, type=_block_number)
    parser.add_argument("--end-block", required=True, type=_block_number)
    parser.add_argument("--output-format", choices=OUTPUT_FORMATS, default="simple")
    parser.add_argument("--batch-size", type=_positive_int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument("--max-concurrent", type=_positive_int, default=DEFAULT_MAX_CONCURRENT)
    parser.add_argument("--detailed-blocks", action="store_true", help="print per-block triggered/total counts")
    parser.add_argument(
        "--receipt-log-fallback",
        action="store_true",
        help="without trace support, treat logs emitted by the target as internal calls",
    )
    parser.add_argument("--no-internal-calls", action="store_true", help="direct calls only, skip trace probing")
    parser.add_argument("--progress", action="store_true", help="draw a progress bar on stderr")
    return parser


def fetcher_main(argv: Optional[List[str]] = None) -> int:
    parser = build_fetcher_parser()
    args = parser.parse_args(argv)
    if not args.rpc_url:
        parser.error("--rpc-url is required (or set ETH_RPC_URL)")
    try:
        validate_range(args.start_block, args.end_block)
    except ConfigError as e:
        parser.error(str(e))

    configure_logging(args.verbose)
    log.info("Starting transaction fetch with internal call detection")
    client = RpcClient(args.rpc_url, timeout=args.timeout)
    fetcher = TransactionFetcher(
        client,
        args.target_contract,
        args.batch_size,
        args.max_concurrent,
        detect_internal_calls=not args.no_internal_calls,
        receipt_log_fallback=args.receipt_log_fallback,
        show_progress=args.progress,
    )
    result = fetcher.fetch(args.start_block, args.end_block)

    write_payload(sys.stdout, result.records, args.output_format)
    if args.detailed_blocks:
        sys.stdout.write("\n".join(format_block_summaries(result.blocks)) + "\n")
        sys.stdout.flush()
    return 0


# ---------- trace-support-harness ----------
def build_probe_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trace-support-harness",
        description="Check which trace APIs an RPC endpoint supports.",
    )
    _add_rpc_url(parser)
    parser.add_argument("--block", required=True, type=_block_number, help="block number to probe")
    parser.add_argument("--target-contract", type=_address, help="contract address for the trace_filter test")
    return parser


def probe_main(argv: Optional[List[str]] = None) -> int:
    parser = build_probe_parser()
    args = parser.parse_args(argv)
    if not args.rpc_url:
        parser.error("--rpc-url is required (or set ETH_RPC_URL)")

    configure_logging(args.verbose)
    client = RpcClient(args.rpc_url, timeout=args.timeout)
    print(f"Trace support check for block {args.block}")
    for report in probe_all(client, args.block, args.target_contract):
        print(report.render())
        if report.detail:
            log.debug("%s: %s", report.method, report.detail)
    return 0


if __name__ == "__main__":
    sys.exit(fetcher_main())
