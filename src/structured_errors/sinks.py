"""Sinks: destinations for forwarded records."""

from __future__ import annotations

import io
import logging
import sys
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Protocol

import duckdb

from .models import utc_now


class Sink(Protocol):
    """A synchronous byte sink.

    Each call receives one fully rendered, newline-terminated record. Sinks are
    not owned by the store that writes to them; closing is the caller's job.
    """

    def write(self, data: bytes) -> None:
        """Consume one rendered record."""


class NullSink:
    """Discards everything written to it."""

    def write(self, data: bytes) -> None:
        """No-op."""


class StreamSink:
    """Writes to a binary or text stream (stderr by default)."""

    def __init__(self, stream: IO[Any] | None = None, *, encoding: str = "utf-8") -> None:
        self._stream = stream if stream is not None else sys.stderr
        self._encoding = encoding

    def write(self, data: bytes) -> None:
        """Write `data` and flush the stream, decoding first for text streams."""
        if isinstance(self._stream, io.TextIOBase):
            self._stream.write(data.decode(self._encoding))
        else:
            self._stream.write(data)
        self._stream.flush()


class InMemorySink:
    """In-memory sink for tests and local debugging."""

    def __init__(self) -> None:
        """Create an empty in-memory sink."""
        self._lock = threading.Lock()
        self._chunks: list[bytes] = []

    def write(self, data: bytes) -> None:
        """Append a chunk to the in-memory list (thread-safe)."""
        with self._lock:
            self._chunks.append(data)

    def snapshot(self) -> Sequence[bytes]:
        """Return a point-in-time copy of all written chunks."""
        with self._lock:
            return list(self._chunks)

    def getvalue(self) -> bytes:
        """Return everything written so far as one byte string."""
        with self._lock:
            return b"".join(self._chunks)


class LoggerSink:
    """Forwards each rendered record to a stdlib logger as one message."""

    def __init__(self, logger: logging.Logger, level: int = logging.INFO, *, encoding: str = "utf-8") -> None:
        self._logger = logger
        self._level = level
        self._encoding = encoding

    def write(self, data: bytes) -> None:
        """Log `data` as one message, without its trailing newline."""
        self._logger.log(self._level, "%s", data.decode(self._encoding).rstrip("\n"))


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "forwarded_records"


class DuckDBSink:
    """DuckDB sink for durable local persistence of forwarded records.

    Each write becomes one row holding the rendered line and the time it was
    forwarded. Rows are numbered so `lines()` can return them in write order.
    """

    def __init__(self, *, path: str | Path, table: str = "forwarded_records") -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema()
        row = self._conn.execute(f"select coalesce(max(seq), 0) from {self._opts.table}").fetchone()
        self._seq = int(row[0]) if row else 0

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          seq bigint not null,
          logged_at timestamptz not null,
          line varchar not null
        )
        """
        with self._lock:
            self._conn.execute(create_sql)

    def write(self, data: bytes) -> None:
        """Insert one forwarded line (newline stripped)."""
        insert_sql = f"insert into {self._opts.table} (seq, logged_at, line) values (?, ?, ?)"
        with self._lock:
            self._seq += 1
            self._conn.execute(insert_sql, [self._seq, utc_now(), data.decode("utf-8").rstrip("\n")])

    def lines(self) -> list[str]:
        """Return every stored line in write order."""
        with self._lock:
            rows = self._conn.execute(f"select line from {self._opts.table} order by seq").fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()
