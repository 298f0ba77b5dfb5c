"""Reader for the Redis listpack encoding used inside stream entries."""

from __future__ import annotations

from collections.abc import Iterator

_HEADER_SIZE = 6  # 4 bytes total length, 2 bytes element count

_INT_WIDTHS = {0xF1: 2, 0xF2: 3, 0xF3: 4, 0xF4: 8}


class ListpackError(ValueError):
    """Raised when listpack data cannot be decoded."""


def encode_backlen_size(length: int) -> int:
    """Return ``length`` plus the number of bytes its back-length takes."""
    if length <= 127:
        return length + 1
    if length < 16383:
        return length + 2
    if length < 2097151:
        return length + 3
    if length < 268435455:
        return length + 4
    return length + 5


def _signed(uval: int, bits: int) -> int:
    if uval >= 1 << (bits - 1):
        return -((1 << bits) - 1 - uval) - 1
    return uval


class Listpack:
    """Sequential reader over one listpack blob."""

    def __init__(self, data: bytes) -> None:
        if len(data) < _HEADER_SIZE:
            raise ListpackError("listpack header is truncated")
        self.data = bytes(data)
        self.num_bytes = int.from_bytes(self.data[:4], "little")
        self.num_elements = int.from_bytes(self.data[4:6], "little")
        self.position = _HEADER_SIZE

    def _take(self, start: int, size: int) -> bytes:
        end = start + size
        if end > len(self.data):
            raise ListpackError(f"listpack entry at {start} is truncated")
        return self.data[start:end]

    def next(self) -> str:
        """Decode the entry at the current position and move past it."""
        inx = self.position
        head = self._take(inx, 1)[0]

        if head & 0x80 == 0:
            self.position += encode_backlen_size(1)
            return str(head & 0x7F)

        if head & 0x40 == 0:
            length = head & 0x3F
            payload = self._take(inx + 1, length)
            self.position += encode_backlen_size(1 + length)
            return payload.decode("utf-8", "surrogateescape")

        if head & 0x20 == 0:
            raw = self._take(inx, 2)
            uval = ((raw[0] & 0x1F) << 8) + raw[1]
            self.position += encode_backlen_size(2)
            return str(_signed(uval, 13))

        if head & 0x10 == 0:
            raw = self._take(inx, 2)
            length = ((raw[0] & 0x0F) << 8) + raw[1]
            payload = self._take(inx + 2, length)
            self.position += encode_backlen_size(2 + length)
            return payload.decode("utf-8", "surrogateescape")

        if head == 0xF0:
            length = int.from_bytes(self._take(inx + 1, 4), "little")
            payload = self._take(inx + 5, length)
            self.position += encode_backlen_size(1 + 4 + length)
            return payload.decode("utf-8", "surrogateescape")

        width = _INT_WIDTHS.get(head)
        if width is None:
            raise ListpackError(f"decode error! encode byte is {head}")
        uval = int.from_bytes(self._take(inx + 1, width), "little")
        self.position += encode_backlen_size(1 + width)
        return str(_signed(uval, width * 8))

    def next_integer(self) -> int:
        """Decode the next entry as a decimal integer."""
        text = self.next()
        try:
            return int(text, 10)
        except ValueError:
            raise ListpackError(f"str to int error: {text}") from None

    def __iter__(self) -> Iterator[str]:
        for _ in range(self.num_elements):
            yield self.next()