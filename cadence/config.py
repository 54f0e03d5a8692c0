# cadence/config.py
"""
Configuration for Cadence.

All configuration flows through this module.  Values are loaded from
environment variables (via a .env file) and validated with Pydantic.  Each
subsystem gets its own settings class; ``CadenceConfig`` composes them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

from cadence.defaults import DEFAULT_MODEL, DEFAULT_PROVIDER

logger = structlog.get_logger(__name__)

# .env lives at the project root, one level above cadence/.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_MESSAGING_TOOLS: tuple[str, ...] = ("whatsapp", "telegram", "discord", "slack")


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts a bare string, a comma-separated string, a JSON array string or
    an existing list.
    """
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                value = json.loads(stripped)
            except ValueError as exc:
                raise ValueError(f"Invalid JSON list: {stripped}") from exc
        else:
            return [part.strip() for part in stripped.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


# list[str] fields that accept bare values, comma-separated and JSON arrays.
# NoDecode hands the raw env string to the validator.
StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


class ProviderConfig(BaseSettings):
    """Connection to the model provider."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    provider: str = Field(DEFAULT_PROVIDER, alias="CADENCE_PROVIDER")
    model: str = Field(DEFAULT_MODEL, alias="CADENCE_MODEL")
    max_tokens: int = Field(8192, alias="CADENCE_MAX_TOKENS")
    request_timeout_seconds: float = Field(120.0, alias="CADENCE_REQUEST_TIMEOUT_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ProviderConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.provider = self.provider.strip().lower() or DEFAULT_PROVIDER
        return self


class ChunkingConfig(BaseSettings):
    """Bounds for block chunking of streamed text."""

    min_chars: int = Field(800, alias="CADENCE_BLOCK_MIN_CHARS")
    max_chars: int = Field(1200, alias="CADENCE_BLOCK_MAX_CHARS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def check_bounds(self) -> "ChunkingConfig":
        self.min_chars = max(1, int(self.min_chars))
        if self.max_chars <= self.min_chars:
            raise ValueError(
                f"max_chars ({self.max_chars}) must exceed min_chars ({self.min_chars})"
            )
        return self


class HumanDelayConfig(BaseSettings):
    """Artificial pause between consecutive block replies."""

    enabled: bool = Field(False, alias="CADENCE_HUMAN_DELAY_ENABLED")
    min_ms: int = Field(800, alias="CADENCE_HUMAN_DELAY_MIN_MS")
    max_ms: int = Field(2500, alias="CADENCE_HUMAN_DELAY_MAX_MS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "HumanDelayConfig":
        self.min_ms = max(0, int(self.min_ms))
        self.max_ms = max(0, int(self.max_ms))
        return self


class DispatchConfig(BaseSettings):
    """Outbound reply shaping."""

    response_prefix: Optional[str] = Field(None, alias="CADENCE_RESPONSE_PREFIX")

    model_config = {
        "env_file": _ENV_FILE,
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    @model_validator(mode="after")
    def normalize_prefix(self) -> "DispatchConfig":
        if isinstance(self.response_prefix, str):
            self.response_prefix = self.response_prefix.strip() or None
        return self


class RunnerConfig(BaseSettings):
    """Run controller behaviour."""

    messaging_tools: StrList = Field(
        default_factory=lambda: list(DEFAULT_MESSAGING_TOOLS),
        alias="CADENCE_MESSAGING_TOOLS",
    )
    wait_timeout_seconds: float = Field(60.0, alias="CADENCE_WAIT_TIMEOUT_SECONDS")
    session_title_prefix: str = Field("cadence", alias="CADENCE_SESSION_TITLE_PREFIX")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_values(self) -> "RunnerConfig":
        self.messaging_tools = [name.lower() for name in self.messaging_tools]
        self.wait_timeout_seconds = max(0.0, float(self.wait_timeout_seconds))
        self.session_title_prefix = self.session_title_prefix.strip() or "cadence"
        return self


class CadenceConfig:
    """
    Master configuration that composes all subsystem configs.

    Every component receives its slice from here; nothing reads the
    environment on its own.
    """

    def __init__(self) -> None:
        self.provider = ProviderConfig()
        self.chunking = ChunkingConfig()
        self.human_delay = HumanDelayConfig()
        self.dispatch = DispatchConfig()
        self.runner = RunnerConfig()
        logger.debug(
            "config.loaded",
            provider=self.provider.provider,
            model=self.provider.model,
            human_delay=self.human_delay.enabled,
        )

    def __repr__(self) -> str:
        return (
            f"CadenceConfig(model={self.provider.model}, "
            f"chunking={self.chunking.min_chars}-{self.chunking.max_chars}, "
            f"human_delay={self.human_delay.enabled})"
        )
