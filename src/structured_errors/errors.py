"""Exceptions raised by structured_errors."""

from __future__ import annotations


class StructuredErrorsError(Exception):
    """Base class for all structured_errors exceptions."""


class EmptyStoreError(StructuredErrorsError, IndexError):
    """Positional access on a store that holds no records."""


class RenderError(StructuredErrorsError):
    """A store cannot be rendered in the requested form."""


class ConfigError(StructuredErrorsError, ValueError):
    """Invalid render configuration read from the environment."""


class SinkWriteError(StructuredErrorsError):
    """The sink failed while records were being forwarded.

    Forwarding stops at the first failure. Records already written are not
    rolled back; `forwarded` says how many made it. The sink's own exception
    is available as `__cause__`.
    """

    def __init__(self, forwarded: int, cause: BaseException) -> None:
        super().__init__(f"sink write failed after {forwarded} record(s): {cause}")
        self.forwarded = forwarded
