"""Minimal reader of target replies: surfaces error replies, ignores the rest."""

from __future__ import annotations

from typing import BinaryIO

IGNORE_REPLY = "ignore"

DEFAULT_MAX_LINE = 4096


class ReplyError(Exception):
    """Raised when a reply line cannot be read or is malformed."""


class ErrorReply(str):
    """The text of a ``-`` error reply."""


class ReplyReader:
    """Reads reply lines from a binary stream."""

    def __init__(self, stream: BinaryIO, max_line: int = DEFAULT_MAX_LINE) -> None:
        self.stream = stream
        self.max_line = max_line

    def _read_line(self) -> bytes:
        line = self.stream.readline(self.max_line)
        if not line.endswith(b"\n"):
            if len(line) >= self.max_line:
                raise ReplyError("ReaderBufferFull")
            raise ReplyError("ReadSliceFail:EOF")
        if len(line) < 2 or line[-2:-1] != b"\r":
            raise ReplyError("BadRedisReply")
        return line[:-2]

    def read_next_reply(self) -> ErrorReply | str:
        """Return an ErrorReply for ``-`` lines, IGNORE_REPLY for other replies.

        Lines that do not start a reply are skipped.
        """
        while True:
            line = self._read_line()
            if not line:
                raise ReplyError("EmptyReply")
            marker = line[:1]
            if marker == b"-":
                return ErrorReply(line[1:].decode("utf-8", "surrogateescape"))
            if marker in (b"+", b":", b"$", b"*"):
                return IGNORE_REPLY