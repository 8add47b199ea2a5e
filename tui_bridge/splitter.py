"""
Incremental line reassembly for streamed terminal text.

Chunks from a pty arrive at arbitrary boundaries. LineSplitter keeps the
unterminated tail of the stream and prepends it to the next chunk, so every
line it emits is complete no matter how many chunks it was split across.
"""

import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

LINE_TERMINATOR = "\n"
DEFAULT_MAX_LINE_LENGTH = 64 * 1024


class LineSplitter:
    """Stateful line splitter, one per output stream."""

    def __init__(self, max_line_length: int = DEFAULT_MAX_LINE_LENGTH):
        self._carry = ""
        self._max_line_length = max_line_length

    @property
    def pending(self) -> int:
        """Number of characters waiting for a terminator."""
        return len(self._carry)

    def feed(self, text: str) -> List[str]:
        """
        Append text and return the lines it completed.

        Args:
            text: Normalized text (control sequences already stripped).

        Returns:
            Complete lines in arrival order, without terminators.
        """
        if not text:
            return []

        parts = (self._carry + text).split(LINE_TERMINATOR)
        self._carry = parts.pop()

        # A program that never writes a newline must not grow the carry forever
        if self._max_line_length and len(self._carry) > self._max_line_length:
            logger.debug(f"Forcing line break after {len(self._carry)} chars")
            parts.append(self._carry)
            self._carry = ""

        return parts

    def flush_remainder(self) -> Optional[str]:
        """Return the unterminated tail at stream end, or None if empty."""
        remainder, self._carry = self._carry, ""
        return remainder or None
