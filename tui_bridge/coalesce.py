"""
Debounced output batching.

Spinner redraws can produce hundreds of chunks a second. CoalescingBuffer
collects kept text and emits it as one message per debounce window:

- The first push arms a single-shot timer; later pushes ride along
- Size and age limits force an early flush so a batch cannot grow unbounded
- flush_now() empties the batch synchronously at teardown
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL = 0.15  # 150ms, tune 100-250ms
DEFAULT_MAX_LINES = 200
DEFAULT_MAX_CHARS = 64 * 1024
DEFAULT_MAX_AGE = 1.0


@dataclass(frozen=True)
class OutboundMessage:
    """One message for the client. payload is never empty."""
    kind: str  # "stdout" | "stderr"
    payload: str

    def to_wire(self) -> dict:
        return {"type": self.kind, "data": self.payload}


class CoalescingBuffer:
    """
    Per-stream pending batch with a debounce timer.

    All methods must be called from the event loop thread that owns the
    session; the timer callback runs on the same loop, so push and flush never
    interleave.
    """

    def __init__(
        self,
        emit: Callable[[OutboundMessage], None],
        kind: str = "stdout",
        separator: str = "\n",
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_lines: int = DEFAULT_MAX_LINES,
        max_chars: int = DEFAULT_MAX_CHARS,
        max_age: float = DEFAULT_MAX_AGE,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._emit = emit
        self.kind = kind
        self.separator = separator
        self.flush_interval = flush_interval
        self.max_lines = max_lines
        self.max_chars = max_chars
        self.max_age = max_age
        self._loop = loop
        self._batch: List[str] = []
        self._chars = 0
        self._first_push_ts: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self.flushes = 0
        self.forced_flushes = 0

    @property
    def pending(self) -> int:
        """Number of entries waiting in the batch."""
        return len(self._batch)

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def push(self, text: str) -> None:
        """Append text to the batch, flushing early if a limit is reached."""
        if not self._batch:
            self._first_push_ts = time.monotonic()
        self._batch.append(text)
        self._chars += len(text)

        if self._over_limit():
            self.forced_flushes += 1
            self.flush_now()

    def _over_limit(self) -> bool:
        if self.max_lines and len(self._batch) >= self.max_lines:
            return True
        if self.max_chars and self._chars >= self.max_chars:
            return True
        if self.max_age and self._first_push_ts is not None:
            return time.monotonic() - self._first_push_ts >= self.max_age
        return False

    def schedule_flush(self) -> None:
        """Arm the debounce timer. No-op while already armed."""
        if self._handle is not None:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._handle = None
        self._flush()

    def flush_now(self) -> None:
        """Cancel the timer and emit whatever is pending."""
        self.cancel()
        self._flush()

    def cancel(self) -> None:
        """Disarm the timer without emitting."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _flush(self) -> None:
        batch, self._batch = self._batch, []
        self._chars = 0
        self._first_push_ts = None
        if not batch:
            return

        payload = self.separator.join(batch)
        if not payload:
            return

        self.flushes += 1
        self._emit(OutboundMessage(kind=self.kind, payload=payload))
