"""
Fetch progress on stderr, advanced once per finished batch.

Stdout carries the fetcher payload, so nothing here writes there.
"""

import shutil
import sys
import time
from typing import Optional, TextIO


def fmt_eta(seconds: float) -> str:
    minutes, secs = divmod(int(max(0, seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


class FetchProgress:
    def __init__(self, total_blocks: int, *, stream: Optional[TextIO] = None, width: int = 30):
        self.total_blocks = total_blocks
        self.stream = stream or sys.stderr
        self.width = width
        self.blocks_done = 0
        self.found = 0
        self.failed = 0
        self.started = time.time()

    def batch_done(self, blocks: int, found: int, failed: int = 0) -> None:
        self.blocks_done = min(self.total_blocks, self.blocks_done + blocks)
        self.found += found
        self.failed += failed
        self.stream.write("\r" + self.render())
        self.stream.flush()

    def render(self, now: Optional[float] = None) -> str:
        elapsed = max(1e-9, (now or time.time()) - self.started)
        rate = self.blocks_done / elapsed
        left = self.total_blocks - self.blocks_done
        eta = fmt_eta(left / rate) if rate > 0 else "?"

        share = self.blocks_done / self.total_blocks if self.total_blocks else 1.0
        filled = int(share * self.width)
        line = (
            f"blocks {self.blocks_done}/{self.total_blocks} "
            f"[{'#' * filled}{'.' * (self.width - filled)}] {share:4.0%} "
            f"| {self.found} txs"
        )
        if self.failed:
            line += f" | {self.failed} failed"
        line += f" | {rate:.1f} blocks/s | ETA {eta}"

        columns = shutil.get_terminal_size((100, 20)).columns
        return line[: columns - 1]

    def close(self) -> None:
        self.stream.write("\n")
        self.stream.flush()
