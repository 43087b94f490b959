"""
Configuration system for tablesync using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, List, Literal, Optional, Tuple, Type, Union

import httpx
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError, RemoteServiceError
from .resilience.retry import RetryPolicy


class RemoteConfig(BaseModel):
    """Remote table service connection configuration."""

    base_url: str = Field(
        "https://repo-prod.prod.sagebase.org", description="Base URL of the table service"
    )
    auth_token: Optional[str] = Field(None, description="Bearer token passed through on every request")
    timeout: float = Field(60.0, description="HTTP request timeout in seconds")
    upload_timeout: float = Field(300.0, description="Timeout for file part uploads in seconds")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RateLimitConfig(BaseModel):
    """Token bucket rates, in tokens per second."""

    general_per_second: float = Field(10.0, gt=0, description="General traffic rate")
    metadata_per_second: float = Field(
        12.0 / 60.0, gt=0, description="Column metadata query rate (12 per minute)"
    )


class RetryConfig(BaseModel):
    """Retry policy for one class of remote call."""

    attempts: int = Field(2, ge=1, description="Total attempts, including the first")
    delay_seconds: float = Field(0.1, ge=0, description="Fixed delay between attempts")
    retry_transport_errors: bool = Field(
        False, description="Also retry raw network errors (e.g. during file upload)"
    )

    def to_policy(self) -> RetryPolicy:
        retry_on: Tuple[Type[BaseException], ...] = (RemoteServiceError,)
        if self.retry_transport_errors:
            retry_on += (httpx.TransportError,)
        return RetryPolicy(attempts=self.attempts, delay=self.delay_seconds, retry_on=retry_on)


class RetriesConfig(BaseModel):
    """Retry policies per call site."""

    metadata: RetryConfig = Field(default_factory=RetryConfig)
    upload: RetryConfig = Field(
        default_factory=lambda: RetryConfig(attempts=2, delay_seconds=1.0, retry_transport_errors=True)
    )
    folder: RetryConfig = Field(
        default_factory=lambda: RetryConfig(attempts=2, delay_seconds=1.0)
    )


class PollingConfig(BaseModel):
    """Async job polling budget."""

    interval_seconds: float = Field(1.0, ge=0, description="Seconds between polls")
    max_polls: int = Field(300, ge=1, description="Polls before the job times out")
    backoff_schedule: List[float] = Field(
        default_factory=list,
        description="Optional waits between polls; the last value repeats",
    )

    @field_validator("backoff_schedule")
    @classmethod
    def non_negative(cls, v: List[float]) -> List[float]:
        if any(x < 0 for x in v):
            raise ValueError("backoff values cannot be negative")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class TableSyncConfig(BaseSettings):
    """Main tablesync configuration."""

    service_name: str = Field("tablesync", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    remote: RemoteConfig = Field(
        default_factory=RemoteConfig, description="Remote service configuration"
    )
    rate_limits: RateLimitConfig = Field(
        default_factory=RateLimitConfig, description="Rate limits"
    )
    retries: RetriesConfig = Field(
        default_factory=RetriesConfig, description="Retry policies"
    )
    polling: PollingConfig = Field(
        default_factory=PollingConfig, description="Async job polling"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TABLESYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TableSyncConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def validate_config(self) -> None:
        """Validate the configuration for consistency."""
        if not self.remote.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"Remote base_url must be an http(s) URL, got '{self.remote.base_url}'"
            )
        if self.rate_limits.metadata_per_second > self.rate_limits.general_per_second:
            raise ConfigurationError(
                "Metadata rate limit should not exceed the general rate limit"
            )

    @property
    def poll_budget_seconds(self) -> float:
        """Approximate wall-clock budget of one async job."""
        schedule = self.polling.backoff_schedule
        if not schedule:
            return self.polling.interval_seconds * (self.polling.max_polls - 1)
        waits = self.polling.max_polls - 1
        head = schedule[:waits]
        return sum(head) + schedule[-1] * max(0, waits - len(head))

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True), f, default_flow_style=False, indent=2
            )
