"""Render configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into a strongly-typed, frozen Pydantic model.
- Validating values and providing actionable error messages.
"""

from __future__ import annotations

import os
from collections.abc import Collection

import dotenv
from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigError
from .formatters import KeyTransform, OutputFormat

FORMAT_ENV = "STRUCTURED_ERRORS_FORMAT"
KEY_CASE_ENV = "STRUCTURED_ERRORS_KEY_CASE"


def _get_env_choice(name: str, default: str, choices: Collection[str]) -> str:
    """Read a case-insensitive enumerated env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    normalized = raw.strip().lower()
    if normalized not in choices:
        allowed = ", ".join(sorted(choices))
        raise ConfigError(f"{name} must be one of: {allowed}. Got: {raw!r}")
    return normalized


class RenderConfig(BaseModel):
    """How a store renders its records, fixed for the store's lifetime."""

    model_config = ConfigDict(frozen=True)

    format: OutputFormat = Field(default="json", description="Rendering format (text or json)")
    key_transform: KeyTransform = Field(
        default=KeyTransform.IDENTITY,
        description="Rewrite applied to every emitted key",
    )


def load_render_config() -> RenderConfig:
    """Load render configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ConfigError` naming the variable and the allowed values when a
      setting is not recognised.
    """
    dotenv.load_dotenv()

    output_format = _get_env_choice(FORMAT_ENV, "json", ("text", "json"))
    key_case = _get_env_choice(KEY_CASE_ENV, KeyTransform.IDENTITY.value, [t.value for t in KeyTransform])
    return RenderConfig(format=output_format, key_transform=KeyTransform(key_case))
