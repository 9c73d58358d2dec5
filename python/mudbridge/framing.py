"""Newline framing for the byte stream coming off the MUD socket."""

from __future__ import annotations

from typing import List, Optional

from .protocol import ENCODING, ProtocolError


DEFAULT_MAX_LINE_LENGTH = 1024 * 1024


class FrameTooLongError(ProtocolError):
    """Raised when an unterminated line outgrows the limit.

    ``lines`` holds the complete lines that preceded it in the same feed.
    """

    def __init__(self, message: str, lines: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.lines = lines or []


class FrameDecoder:
    """Split an arbitrarily chunked byte stream into complete lines.

    Only the trailing unterminated segment is kept between calls, so the
    output does not depend on where chunk boundaries fall. Lines are
    decoded after splitting, which keeps multi-byte characters intact
    even when a chunk ends in the middle of one.
    """

    def __init__(self, max_line_length: int = DEFAULT_MAX_LINE_LENGTH) -> None:
        if max_line_length <= 0:
            raise ValueError("max_line_length must be positive")
        self.max_line_length = max_line_length
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> List[str]:
        self._buffer.extend(data)
        *complete, remainder = self._buffer.split(b"\n")
        lines = [segment.decode(ENCODING, errors="replace") for segment in complete]
        if len(remainder) > self.max_line_length:
            self._buffer.clear()
            raise FrameTooLongError(
                f"Unterminated line exceeds {self.max_line_length} bytes", lines
            )
        self._buffer = remainder
        return lines

    def reset(self) -> None:
        self._buffer.clear()
