"""An ordered store of structured error records.

`StructuredErrors` accumulates records, remembers the highest severity it has
seen, and consumes its records in two ways that share one formatter:

- buffered rendering (`render_all`, `render_each`, `to_json`), and
- forwarding to a live sink (`flush`).

Because both paths go through the same formatter instance, the bytes a sink
receives are exactly what `render_all` returns.

Typical use collects records within one operation and merges them into the
caller's store on the way out:

    errs = StructuredErrors.new_text(StreamSink())
    errs.error(now, "write failed", Attr("path", path))

    outer.prepend(errs)  # causes first, this failure last
    outer.flush()

A store is not synchronized. Use it from one flow at a time, or guard it with
an external lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

from .config import RenderConfig, load_render_config
from .errors import EmptyStoreError, RenderError, SinkWriteError
from .formatters import KeyTransform, formatter_for
from .models import Attr, Record, Severity, attrs_from_args
from .sinks import NullSink, Sink

logger = logging.getLogger(__name__)


class StructuredErrors:
    """Ordered records plus the highest severity among them."""

    def __init__(self, sink: Sink | None = None, config: RenderConfig | None = None) -> None:
        """Create an empty store.

        Args:
            sink: Destination for `flush`. Not owned by the store. When None,
                a `NullSink` is used and forwarded records are discarded.
            config: Rendering format and key transform; defaults to JSON with
                keys left as-is.
        """
        self._config = config if config is not None else RenderConfig()
        self._formatter = formatter_for(self._config.format, self._config.key_transform)
        self._sink: Sink = sink if sink is not None else NullSink()
        self._records: list[Record] = []
        self._highest: Severity | None = None

    @classmethod
    def new(cls, sink: Sink | None = None, key_transform: KeyTransform = KeyTransform.IDENTITY) -> StructuredErrors:
        """Create a JSON store (the default format)."""
        return cls.new_json(sink, key_transform)

    @classmethod
    def new_json(
        cls, sink: Sink | None = None, key_transform: KeyTransform = KeyTransform.IDENTITY
    ) -> StructuredErrors:
        """Create a store that renders records as JSON objects."""
        return cls(sink, RenderConfig(format="json", key_transform=key_transform))

    @classmethod
    def new_text(
        cls, sink: Sink | None = None, key_transform: KeyTransform = KeyTransform.IDENTITY
    ) -> StructuredErrors:
        """Create a store that renders records as ``key=value`` text lines."""
        return cls(sink, RenderConfig(format="text", key_transform=key_transform))

    @classmethod
    def from_env(cls, sink: Sink | None = None) -> StructuredErrors:
        """Create a store configured from the environment (see `load_render_config`)."""
        return cls(sink, load_render_config())

    @property
    def config(self) -> RenderConfig:
        return self._config

    @property
    def highest_severity(self) -> Severity | None:
        """Highest severity among the records, or None if nothing was added."""
        return self._highest

    @property
    def records(self) -> tuple[Record, ...]:
        """Snapshot of the records in store order."""
        return tuple(self._records)

    def _raise_severity(self, severity: Severity | None) -> None:
        if severity is not None and (self._highest is None or severity > self._highest):
            self._highest = severity

    # ------------------------------------------------------------------
    # Adding records
    # ------------------------------------------------------------------

    def add(self, timestamp: datetime, severity: Severity, message: str, *attrs: Attr | tuple[str, Any]) -> None:
        """Append a record built from explicit attributes.

        Plain ``(key, value)`` tuples are accepted in place of `Attr`.
        """
        record = Record(timestamp=timestamp, severity=severity, message=message, attrs=attrs)
        self._records.append(record)
        self._raise_severity(record.severity)

    def add_from_args(self, timestamp: datetime, severity: Severity, message: str, *args: Any) -> None:
        """Append a record built from a flat ``key, value, key, value, ...`` list.

        See `attrs_from_args` for how malformed input is recovered.
        """
        self.add(timestamp, severity, message, *attrs_from_args(args))

    def debug(self, timestamp: datetime, message: str, *attrs: Attr | tuple[str, Any]) -> None:
        self.add(timestamp, Severity.DEBUG, message, *attrs)

    def debug_from_args(self, timestamp: datetime, message: str, *args: Any) -> None:
        self.add_from_args(timestamp, Severity.DEBUG, message, *args)

    def info(self, timestamp: datetime, message: str, *attrs: Attr | tuple[str, Any]) -> None:
        self.add(timestamp, Severity.INFO, message, *attrs)

    def info_from_args(self, timestamp: datetime, message: str, *args: Any) -> None:
        self.add_from_args(timestamp, Severity.INFO, message, *args)

    def warn(self, timestamp: datetime, message: str, *attrs: Attr | tuple[str, Any]) -> None:
        self.add(timestamp, Severity.WARN, message, *attrs)

    def warn_from_args(self, timestamp: datetime, message: str, *args: Any) -> None:
        self.add_from_args(timestamp, Severity.WARN, message, *args)

    def error(self, timestamp: datetime, message: str, *attrs: Attr | tuple[str, Any]) -> None:
        self.add(timestamp, Severity.ERROR, message, *attrs)

    def error_from_args(self, timestamp: datetime, message: str, *args: Any) -> None:
        self.add_from_args(timestamp, Severity.ERROR, message, *args)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def append(self, other: StructuredErrors) -> None:
        """Add `other`'s records after this store's: ``[self..., other...]``.

        `other` is left unchanged.
        """
        self._records.extend(list(other._records))
        self._raise_severity(other._highest)
        logger.debug("appended %d records", len(other._records))

    def prepend(self, other: StructuredErrors) -> None:
        """Put `other`'s records before this store's: ``[other..., self...]``.

        This is stack order: causes collected by lower layers come first and
        the failure reported at this level comes last. Note the asymmetry with
        `append`. `other` is left unchanged.
        """
        self._records = [*other._records, *self._records]
        self._raise_severity(other._highest)
        logger.debug("prepended %d records", len(other._records))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_empty(self) -> bool:
        return not self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(tuple(self._records))

    def first(self) -> Record:
        """Return the first record; raises `EmptyStoreError` if there is none."""
        if not self._records:
            raise EmptyStoreError("first() on an empty store")
        return self._records[0]

    def last(self) -> Record:
        """Return the last record; raises `EmptyStoreError` if there is none."""
        if not self._records:
            raise EmptyStoreError("last() on an empty store")
        return self._records[-1]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _lines(self) -> Iterator[str]:
        for record in self._records:
            yield self._formatter.render(record)

    def render_all(self) -> str:
        """Render every record and concatenate the lines in order."""
        return "".join(self._lines())

    def render_each(self) -> list[str]:
        """Render every record, one entry per record, without line terminators."""
        return [line.removesuffix("\n") for line in self._lines()]

    def to_json(self) -> str:
        """Render the store as a JSON array of its records.

        Only a JSON-configured store can be rendered this way. A text store's
        lines are not JSON, so `RenderError` is raised rather than producing an
        array that does not parse.
        """
        if self._config.format != "json":
            raise RenderError(f"to_json() needs a json-configured store, this one renders {self._config.format}")
        return "[" + ",".join(line.removesuffix("\n") for line in self._lines()) + "]"

    def as_json_objects(self) -> list[dict[str, Any]]:
        """Parsed form of `to_json()`. Duplicate keys within a record collapse."""
        return json.loads(self.to_json())

    def __str__(self) -> str:
        return self.render_all()

    def __repr__(self) -> str:
        highest = self._highest.name if self._highest is not None else None
        return f"StructuredErrors(format={self._config.format!r}, records={len(self._records)}, highest={highest})"

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: GetCoreSchemaHandler) -> core_schema.CoreSchema:
        # Lets a store sit inside any pydantic model and dump as its JSON array.
        return core_schema.is_instance_schema(
            cls,
            serialization=core_schema.plain_serializer_function_ser_schema(lambda store: store.as_json_objects()),
        )

    # ------------------------------------------------------------------
    # Forwarding
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Write every record, in order, to the sink.

        Stops at the first failing write and raises `SinkWriteError`. Records
        written before the failure stay written.
        """
        for forwarded, line in enumerate(self._lines()):
            try:
                self._sink.write(line.encode("utf-8"))
            except Exception as exc:  # noqa: BLE001 - surfaced as SinkWriteError
                raise SinkWriteError(forwarded, exc) from exc
        logger.debug("flushed %d records", len(self._records))

    async def aflush(self) -> None:
        """`flush()` on a worker thread so a slow sink does not block the event loop.

        The store must not be modified until this completes.
        """
        await asyncio.to_thread(self.flush)
