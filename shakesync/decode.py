"""Rendering of decoded RDB entries as JSON lines."""

from __future__ import annotations

import base64
import json
import math
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class ObjectKind(str, Enum):
    """The value types an entry may decode to."""

    STRING = "string"
    LIST = "list"
    HASH = "hash"
    SET = "set"
    ZSET = "zset"


@dataclass(frozen=True)
class DecodedEntry:
    """Where a decoded value lives: its db, key and expiry time."""

    db: int
    key: bytes
    expire_at: int = 0


def to_text(data: bytes) -> str:
    """Keep bytes from ``#`` to ``~`` and show every other byte as ``.``."""
    return "".join(chr(c) if 0x23 <= c <= 0x7E else "." for c in data)


def to_base64(data: bytes) -> str:
    """Standard padded base64 of ``data``."""
    return base64.b64encode(bytes(data)).decode("ascii")


def _as_text(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    return bytes(data).decode("utf-8", "replace")


def _json_string(text: str) -> str:
    encoded = json.dumps(text, ensure_ascii=False)
    for raw, escaped in _HTML_ESCAPES:
        encoded = encoded.replace(raw, escaped)
    return encoded


def _json_float(value: float) -> str:
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"unsupported value: {value}")
    magnitude = abs(value)
    if magnitude != 0 and (magnitude < 1e-6 or magnitude >= 1e21):
        text = repr(value)
        mantissa, _, exponent = text.partition("e")
        sign = exponent[0]
        digits = exponent[1:].lstrip("0") or "0"
        if sign == "+" and len(digits) < 2:
            digits = digits.rjust(2, "0")
        return f"{mantissa}e{sign}{digits}"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _json_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _json_float(value)
    return _json_string(value)


def _json_line(pairs: Iterable[tuple[str, Any]]) -> str:
    body = ",".join(f"{_json_string(name)}:{_json_value(value)}" for name, value in pairs)
    return "{" + body + "}\n"


def format_aux(key: bytes | str, value: bytes | str) -> str:
    """Render one auxiliary field as a JSON line."""
    return _json_line(
        (("type", "aux"), ("key", _as_text(key)), ("value64", _as_text(value)))
    )


def format_entry(entry: DecodedEntry, kind: ObjectKind | str, obj: Any) -> str:
    """Render a decoded value as JSON lines, one per element.

    ``obj`` is bytes for a string, a sequence of bytes for a list or set,
    ``(field, value)`` pairs for a hash and ``(member, score)`` pairs for a
    sorted set. Raises ValueError for an unknown kind.
    """
    try:
        kind = ObjectKind(kind)
    except ValueError:
        raise ValueError(f"unknown object {kind!r}") from None

    head = (
        ("db", int(entry.db)),
        ("type", kind.value),
        ("expireat", int(entry.expire_at)),
        ("key", to_text(entry.key)),
        ("key64", to_base64(entry.key)),
    )

    if kind is ObjectKind.STRING:
        return _json_line((*head, ("value64", to_base64(obj))))
    if kind is ObjectKind.LIST:
        return "".join(
            _json_line((*head, ("index", index), ("value64", to_base64(element))))
            for index, element in enumerate(obj)
        )
    if kind is ObjectKind.HASH:
        return "".join(
            _json_line(
                (
                    *head,
                    ("field", to_text(field)),
                    ("field64", to_base64(field)),
                    ("value64", to_base64(value)),
                )
            )
            for field, value in obj
        )
    if kind is ObjectKind.SET:
        return "".join(
            _json_line((*head, ("member", to_text(member)), ("member64", to_base64(member))))
            for member in obj
        )
    return "".join(
        _json_line(
            (
                *head,
                ("member", to_text(member)),
                ("member64", to_base64(member)),
                ("score", float(score)),
            )
        )
        for member, score in obj
    )