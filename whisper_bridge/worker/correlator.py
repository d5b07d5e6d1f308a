"""Extracts recognition results from the worker's raw stdout stream."""

from __future__ import annotations

import codecs
import logging
import re
from typing import Optional, Union

from .protocol import MARKER, UNPARSABLE_RESULT

logger = logging.getLogger(__name__)

_RESULT_RE = re.compile(r"Result: (.*)")


def _parse_line(line: str) -> Optional[str]:
    """Payload of a marker line, the placeholder if unparsable, None if no marker."""
    if MARKER not in line:
        return None
    match = _RESULT_RE.search(line)
    if match is None:
        logger.warning(f"Unparsable result line from worker: {line!r}")
        return UNPARSABLE_RESULT
    return match.group(1).strip()


class OutputCorrelator:
    """
    Accumulates worker output since the last reset and pulls out marker lines.

    Matching runs against the cumulative buffer, never a single chunk, since
    the worker's stdout arrives in arbitrary pieces. Only newline-terminated
    lines are considered, so a marker line split across chunks is picked up
    once its last piece arrives.

    A reset may carry an unfinished line over. That line was started before
    the reset, so it is kept out of the buffer; if it turns out to be a marker
    line it is counted in ``carried_results`` instead of being extracted.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._offset = 0  # Start of the first line not yet scanned
        self._carry: Optional[str] = None  # Unfinished line from before the reset
        self._carried_results = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def buffer(self) -> str:
        return self._buffer

    def reset(self, carry_partial: bool = False) -> None:
        """
        Drop everything received so far.

        Args:
            carry_partial: Keep the unfinished trailing line (and any unscanned
                complete lines) so a marker split across the reset is still seen
        """
        if carry_partial:
            tail = self._buffer[self._offset:]
            if self._carry is not None:
                tail = self._carry + tail
            *complete, partial = tail.split("\n")
            for line in complete:
                self._count_carried(line)
            self._carry = partial or None
        else:
            self._carry = None

        self._buffer = ""
        self._offset = 0

    def drop_carry(self) -> None:
        """Forget carried-over output, e.g. when the worker that printed it is gone."""
        self._carry = None
        self._carried_results = 0
        self._decoder.reset()

    def compact(self) -> None:
        """Forget lines already scanned; only call between requests."""
        self._buffer = self._buffer[self._offset:]
        self._offset = 0

    def pop_carried_results(self) -> int:
        """Number of marker lines completed from carried-over output since the last call."""
        count = self._carried_results
        self._carried_results = 0
        return count

    def _count_carried(self, line: str) -> None:
        payload = _parse_line(line.rstrip("\r"))
        if payload is not None:
            logger.info(f"Result line started before the current request: {payload!r}")
            self._carried_results += 1

    def feed(self, chunk: Union[bytes, str]) -> Optional[str]:
        """
        Append a chunk of output and try to extract a result.

        Args:
            chunk: Raw bytes from the worker's stdout (or already decoded text)

        Returns:
            Payload of the first unconsumed marker line, or None
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)

        if self._carry is not None:
            end = chunk.find("\n")
            if end == -1:
                self._carry += chunk
                return None
            self._count_carried(self._carry + chunk[:end])
            self._carry = None
            chunk = chunk[end + 1:]

        self._buffer += chunk
        return self.extract()

    def extract(self) -> Optional[str]:
        """Return the next unconsumed marker payload in the buffer, if any."""
        while True:
            end = self._buffer.find("\n", self._offset)
            if end == -1:
                return None

            line = self._buffer[self._offset:end].rstrip("\r")
            self._offset = end + 1

            payload = _parse_line(line)
            if payload is not None:
                return payload
