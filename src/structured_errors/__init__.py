"""Structured error records.

This package provides a small, self-contained store for structured errors:
- Collecting leveled records (timestamp, severity, message, attributes) in order.
- Tracking the highest severity collected so far.
- Rendering the records as text lines or a JSON array, or forwarding them to a sink.

Stores are meant to be filled within one operation and merged into the caller's
store with `append` or `prepend`.
"""

from .config import RenderConfig, load_render_config
from .errors import ConfigError, EmptyStoreError, RenderError, SinkWriteError, StructuredErrorsError
from .formatters import JSONFormatter, KeyTransform, RecordFormatter, TextFormatter, formatter_for
from .models import BAD_KEY, Attr, Record, Severity, attrs_from_args
from .sinks import DuckDBSink, InMemorySink, LoggerSink, NullSink, Sink, StreamSink
from .store import StructuredErrors

__all__ = [
    "Attr",
    "BAD_KEY",
    "ConfigError",
    "DuckDBSink",
    "EmptyStoreError",
    "InMemorySink",
    "JSONFormatter",
    "KeyTransform",
    "LoggerSink",
    "NullSink",
    "Record",
    "RecordFormatter",
    "RenderConfig",
    "RenderError",
    "Severity",
    "Sink",
    "SinkWriteError",
    "StreamSink",
    "StructuredErrors",
    "StructuredErrorsError",
    "TextFormatter",
    "attrs_from_args",
    "formatter_for",
    "load_render_config",
]
