# src/chainmirror/core/config.py
"""
Configuration schema and loading for chainmirror.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and passed explicitly to
the planner, worker and orchestrator; nothing reads process-level state.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from chainmirror.contracts.enums import FailurePolicy, SourceBackend
from chainmirror.contracts.errors import ConfigurationError

DEFAULT_CONCURRENCY = 100


class SourceSettings(BaseModel):
    """Chain source connection configuration.

    Example YAML:
        source:
          backend: substrate
          url: wss://rpc.example.org
          type_definitions:
            types:
              Address: MultiAddress
    """

    model_config = {"frozen": True, "extra": "forbid"}

    backend: SourceBackend = Field(
        default=SourceBackend.SIDECAR,
        description="Source implementation: sidecar (HTTP JSON API) or substrate (node RPC)",
    )
    url: str = Field(min_length=1, description="Source endpoint URL")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    type_definitions: dict[str, Any] | None = Field(
        default=None,
        description="Custom type registry for decoding (substrate backend only)",
    )


class StoreSettings(BaseModel):
    """Destination store configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    # NOTE: str rather than Path - Path mangles DSNs like postgresql://host/db
    url: str = Field(
        default="sqlite:///./chain.sqlite",
        description="Full SQLAlchemy database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")


class IngestSettings(BaseModel):
    """Range selection and scheduling configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    concurrency: int = Field(
        default=DEFAULT_CONCURRENCY,
        ge=1,
        description="Maximum outstanding fetch-and-persist invocations",
    )
    up_to: int | None = Field(
        default=None,
        ge=0,
        description="Exclusive upper bound: records at or beyond this number are skipped",
    )
    max_count: int | None = Field(
        default=None,
        ge=0,
        description="Ingest at most this many pending records per run",
    )
    latest_first: bool = Field(default=False, description="Process the selected records newest first")
    failure_policy: FailurePolicy = Field(
        default=FailurePolicy.FAIL_FAST,
        description="fail_fast aborts on the first failed record; best_effort runs everything",
    )


class RetrySettings(BaseModel):
    """Retry behavior for transient fetch failures."""

    model_config = {"frozen": True, "extra": "forbid"}

    max_attempts: int = Field(default=3, gt=0, description="Total attempts per source call")
    initial_delay_seconds: float = Field(default=1.0, ge=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=30.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=1.0, ge=0, description="Maximum random jitter added to each wait")


class LoggingSettings(BaseModel):
    """Log output configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False


class ChainMirrorSettings(BaseModel):
    """Top-level configuration.

    Only ``source.url`` is required; everything else has defaults.
    """

    model_config = {"frozen": True}

    source: SourceSettings = Field(description="Chain source configuration")
    store: StoreSettings = Field(default_factory=StoreSettings, description="Destination store configuration")
    ingest: IngestSettings = Field(default_factory=IngestSettings, description="Range and scheduling configuration")
    retry: RetrySettings = Field(default_factory=RetrySettings, description="Fetch retry configuration")
    logging: LoggingSettings = Field(default_factory=LoggingSettings, description="Log output configuration")

    @model_validator(mode="after")
    def validate_type_definitions_backend(self) -> "ChainMirrorSettings":
        """Type definitions only mean something to a decoding source."""
        if self.source.type_definitions is not None and self.source.backend != SourceBackend.SUBSTRATE:
            raise ValueError(
                f"source.type_definitions requires backend 'substrate', got '{self.source.backend.value}'. "
                "The sidecar service is configured with its own type bundle."
            )
        return self


def resolve_store_url(destination: str) -> str:
    """Turn a CLI destination into a SQLAlchemy URL.

    A value containing ``://`` is taken as a URL; anything else is a SQLite
    file path.
    """
    if "://" in destination:
        return destination
    return f"sqlite:///{Path(destination).expanduser().resolve()}"


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge overrides into base; None values in overrides (at any depth) are ignored."""
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict):
            existing = merged.get(key)
            merged[key] = _deep_merge(existing if isinstance(existing, dict) else {}, value)
        else:
            merged[key] = value
    return merged


def _format_validation_error(error: ValidationError) -> str:
    lines = ["Configuration errors:"]
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


def build_settings(raw_config: dict[str, Any]) -> ChainMirrorSettings:
    """Validate a raw config dict.

    Raises:
        ConfigurationError: If validation fails, listing every failing field
    """
    try:
        return ChainMirrorSettings(**raw_config)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e


def load_settings(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ChainMirrorSettings:
    """Load settings from an optional YAML file, environment and overrides.

    Precedence, highest first:
    1. ``overrides`` (CLI options; None values are skipped)
    2. Environment variables (CHAINMIRROR_*, ``__`` for nesting, e.g.
       CHAINMIRROR_INGEST__CONCURRENCY=20)
    3. Config file
    4. Defaults from the Pydantic schema

    Args:
        config_path: Path to YAML configuration file, or None
        overrides: Nested dict of explicit values

    Returns:
        Validated ChainMirrorSettings instance

    Raises:
        FileNotFoundError: If config_path is given but doesn't exist
        ConfigurationError: If configuration fails validation
    """
    from dynaconf import Dynaconf

    settings_files: list[str] = []
    if config_path is not None:
        # Dynaconf silently accepts missing files
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        settings_files.append(str(config_path))

    dynaconf_settings = Dynaconf(
        envvar_prefix="CHAINMIRROR",
        settings_files=settings_files,
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase top-level keys and adds its own bookkeeping
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES", "ENVVAR_PREFIX", "MERGE_ENABLED"}
    raw_config: dict[str, Any] = {}
    for key, value in dynaconf_settings.as_dict().items():
        if key in internal_keys:
            continue
        # Section fields may arrive uppercased from env vars; their values
        # (e.g. type_definitions) keep their case
        if isinstance(value, dict):
            value = {str(k).lower(): v for k, v in value.items()}
        raw_config[key.lower()] = value

    if overrides:
        raw_config = _deep_merge(raw_config, overrides)

    return build_settings(raw_config)
