"""Record formatters.

A formatter renders one `Record` to one newline-terminated line. Two
implementations exist:

- `TextFormatter`: ``time=... level=... msg=... key=value ...``
- `JSONFormatter`: ``{"time":...,"level":...,"msg":...,"key":value,...}``

Both emit ``time``, ``level`` and ``msg`` first, in that order, followed by
the record's attributes in insertion order. A `KeyTransform` is applied to
every emitted key (including the three fixed ones) but not to keys nested
inside attribute values.

Each render writes into its own scratch buffer, so a formatter can be shared
by any number of callers without output leaking between records.
"""

from __future__ import annotations

import io
import json
import math
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel

from .models import Record, Severity

OutputFormat = Literal["text", "json"]


class KeyTransform(str, Enum):
    """Rewrite applied to every attribute key before it is emitted."""

    IDENTITY = "identity"
    UPPER = "upper"
    LOWER = "lower"

    def apply(self, key: str) -> str:
        """Return `key` rewritten according to this transform."""
        if self is KeyTransform.UPPER:
            return key.upper()
        if self is KeyTransform.LOWER:
            return key.lower()
        return key


def _utc_offset(ts: datetime) -> str:
    offset = ts.utcoffset()
    if not offset:
        return "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    hours, rest = divmod(abs(total), 3600)
    return f"{sign}{hours:02d}:{rest // 60:02d}"


def _aware(ts: datetime) -> datetime:
    # Naive datetimes are taken to be UTC.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def format_text_time(ts: datetime) -> str:
    """RFC 3339 with millisecond precision, e.g. ``2000-01-02T03:04:05.000Z``."""
    ts = _aware(ts)
    return f"{ts:%Y-%m-%dT%H:%M:%S}.{ts.microsecond // 1000:03d}{_utc_offset(ts)}"


def format_json_time(ts: datetime) -> str:
    """RFC 3339 with trailing sub-second zeros trimmed, e.g. ``2000-01-02T03:04:05Z``."""
    ts = _aware(ts)
    fraction = f".{ts.microsecond:06d}".rstrip("0") if ts.microsecond else ""
    return f"{ts:%Y-%m-%dT%H:%M:%S}{fraction}{_utc_offset(ts)}"


class RecordFormatter(ABC):
    """Renders a record to a single line of output."""

    def __init__(self, key_transform: KeyTransform = KeyTransform.IDENTITY) -> None:
        self.key_transform = key_transform

    def render(self, record: Record) -> str:
        """Render `record` as one line, including the trailing newline."""
        buf = io.StringIO()
        self._write(buf, record)
        buf.write("\n")
        return buf.getvalue()

    @abstractmethod
    def _write(self, buf: io.StringIO, record: Record) -> None:
        """Write the record, without a line terminator, into `buf`."""

    def _pairs(self, record: Record) -> Iterator[tuple[str, Any]]:
        key = self.key_transform.apply
        yield key("time"), record.timestamp
        yield key("level"), record.severity
        yield key("msg"), record.message
        for attr in record.attrs:
            yield key(attr.key), attr.value


# =============================================================================
# Text
# =============================================================================


def _needs_quoting(s: str) -> bool:
    if not s:
        return True
    return any(ch in '="' or ch.isspace() or not ch.isprintable() for ch in s)


def _quote_if_needed(s: str) -> str:
    if _needs_quoting(s):
        return json.dumps(s, ensure_ascii=False)
    return s


def _sorted_items(value: Mapping[Any, Any]) -> list[tuple[Any, Any]]:
    try:
        return sorted(value.items(), key=lambda kv: kv[0])
    except TypeError:
        return list(value.items())


def text_value(value: Any) -> str:
    """Render a value for the text format, before any quoting.

    Mappings render as ``map[k:v k2:v2]`` with sorted keys and sequences as
    ``[a b]``; nested values follow the same rules.
    """
    if isinstance(value, Severity):
        return value.name
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return format_text_time(value)
    if isinstance(value, Mapping):
        inner = " ".join(f"{text_value(k)}:{text_value(v)}" for k, v in _sorted_items(value))
        return f"map[{inner}]"
    if isinstance(value, list | tuple):
        return "[" + " ".join(text_value(v) for v in value) + "]"
    return str(value)


class TextFormatter(RecordFormatter):
    """Space separated ``key=value`` lines."""

    def _write(self, buf: io.StringIO, record: Record) -> None:
        for i, (key, value) in enumerate(self._pairs(record)):
            if i:
                buf.write(" ")
            buf.write(_quote_if_needed(key))
            buf.write("=")
            buf.write(_quote_if_needed(text_value(value)))


# =============================================================================
# JSON
# =============================================================================


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_json_time(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return _json_ready(value.model_dump(mode="json"))
    if isinstance(value, set | frozenset):
        return [_json_ready(v) for v in value]
    return str(value)


def _json_ready(value: Any) -> Any:
    """Normalize a value so `json.dumps` cannot reject it.

    Mapping keys become strings in the same order the text format uses, and
    non-finite floats become strings since JSON has no token for them.
    """
    if isinstance(value, Severity):
        return value.name
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "NaN"
        return "+Inf" if value > 0 else "-Inf"
    if isinstance(value, Mapping):
        return {k if isinstance(k, str) else text_value(k): _json_ready(v) for k, v in _sorted_items(value)}
    if isinstance(value, list | tuple):
        return [_json_ready(v) for v in value]
    return value


def json_value(value: Any) -> str:
    """Serialize a value as compact JSON; nested mapping keys are sorted where comparable."""
    return json.dumps(
        _json_ready(value),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_json_default,
    )


class JSONFormatter(RecordFormatter):
    """One JSON object per line.

    The object is assembled pair by pair rather than from a dict, so duplicate
    attribute keys survive in insertion order.
    """

    def _write(self, buf: io.StringIO, record: Record) -> None:
        buf.write("{")
        for i, (key, value) in enumerate(self._pairs(record)):
            if i:
                buf.write(",")
            buf.write(json_value(key))
            buf.write(":")
            buf.write(json_value(value))
        buf.write("}")


def formatter_for(
    output_format: OutputFormat,
    key_transform: KeyTransform = KeyTransform.IDENTITY,
) -> RecordFormatter:
    """Build the formatter for `output_format`."""
    if output_format == "text":
        return TextFormatter(key_transform)
    if output_format == "json":
        return JSONFormatter(key_transform)
    raise ValueError(f"unknown output format: {output_format!r}")
