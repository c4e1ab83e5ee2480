"""Configuration models for the catalog synchronization engine."""

from enum import Enum

from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class PartialReferencePolicy(str, Enum):
    """What to do when some entries of a list reference cannot be resolved."""

    DROP_UNRESOLVED = "drop_unresolved"
    FAIL_ENTITY = "fail_entity"


class SourceConfig(BaseModel):
    """Configuration for the source-of-truth API."""

    base_url: HttpUrl = Field(default=..., description="Source API base URL")
    auth_token: str | None = Field(default=None, description="Optional bearer token")
    page_size: int = Field(default=100, ge=1, le=1000, description="Records requested per page")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout per request")
    structured_object_types: list[str] = Field(
        default_factory=list,
        description="Structured object types fetched one after another",
    )


class TargetConfig(BaseModel):
    """Configuration for the target platform's admin API."""

    shop_domain: str = Field(default=..., min_length=1, description="Target shop domain")
    access_token: str = Field(default=..., description="Admin API access token")
    api_version: str = Field(default="2025-04", description="Admin API version")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout per request")

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"


class StoreConfig(BaseModel):
    """Configuration for the identity mapping store."""

    backend: str = Field(default="sql", description="Mapping store backend (sql or memory)")
    url: str = Field(
        default="sqlite:///catalog_sync_mappings.db",
        description="SQLAlchemy database URL for the sql backend",
    )


class SyncConfig(BaseModel):
    """Pacing, retry and reconciliation behavior."""

    min_call_spacing_ms: int = Field(
        default=300, ge=0, description="Minimum delay between two target calls"
    )
    max_retries: int = Field(default=5, ge=0, le=20, description="Retries per target call")
    max_backoff_ms: int = Field(default=30000, ge=0, description="Cap for exponential backoff")
    base_backoff_ms: int = Field(default=1000, ge=0, description="First exponential backoff step")
    throttle_buffer_ms: int = Field(
        default=500, ge=0, description="Added to computed throttle waits"
    )
    bucket_capacity: float = Field(default=2000.0, gt=0, description="Leaky bucket capacity")
    restore_rate: float = Field(default=100.0, gt=0, description="Points restored per second")
    default_request_cost: float = Field(
        default=20.0, gt=0, description="Assumed cost of a call without an advertised cost"
    )
    on_partial_reference_failure: PartialReferencePolicy = Field(
        default=PartialReferencePolicy.DROP_UNRESOLVED,
        description="Handling of list references with unresolved entries",
    )
    max_error_samples: int = Field(
        default=20, ge=0, description="Error messages kept per kind in the run report"
    )
    text_replacements: dict[str, str] = Field(
        default_factory=dict,
        description="Literal substring replacements applied to textual payload values",
    )
    structured_object_type_aliases: dict[str, str] = Field(
        default_factory=dict,
        description="Source structured object type -> target type",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    This class uses pydantic-settings to load configuration from environment
    variables with the APP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    source: SourceConfig
    target: TargetConfig
    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
