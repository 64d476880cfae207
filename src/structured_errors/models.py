"""Record models.

Records are designed to be:
- Immutable once created; a record's identity is its position in a store.
- Ordered all the way down: attributes keep insertion order and duplicate keys.
- Cheap to build from either explicit `Attr` pairs or a flat key/value list.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# Key used for values that could not be paired with a string key.
BAD_KEY = "!BADKEY"


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


class Severity(IntEnum):
    """Ordered record severity.

    The numeric values leave gaps between levels so comparisons stay stable if
    intermediate levels are ever introduced.
    """

    DEBUG = -4
    INFO = 0
    WARN = 4
    ERROR = 8

    def __str__(self) -> str:
        return self.name


class Attr(NamedTuple):
    """A single key/value attribute attached to a record."""

    key: str
    value: Any


class Record(BaseModel):
    """A structured log entry held by a `StructuredErrors` store."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    severity: Severity
    message: str

    # Insertion order is significant; duplicate keys are kept.
    attrs: tuple[Attr, ...] = ()


def attrs_from_args(args: Sequence[Any]) -> list[Attr]:
    """Group a flat, interleaved key/value list into attributes.

    Grouping is positional: ``args[0]``/``args[1]`` form the first pair and so
    on. An `Attr` found where a key is expected is taken as-is. A non-string
    key, or a trailing key with no value, is recovered as an attribute under
    `BAD_KEY` holding the offending value, and a warning is logged.
    """
    attrs: list[Attr] = []
    i = 0
    while i < len(args):
        head = args[i]
        if isinstance(head, Attr):
            attrs.append(head)
            i += 1
        elif isinstance(head, str) and i + 1 < len(args):
            attrs.append(Attr(head, args[i + 1]))
            i += 2
        else:
            logger.warning("unpaired or non-string key at position %d: %r", i, head)
            attrs.append(Attr(BAD_KEY, head))
            i += 1
    return attrs
