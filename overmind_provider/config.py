"""Configuration models and environment variable parsing for the Overmind provider."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, SecretStr, field_validator

from overmind_provider.exceptions import ConfigurationError

# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_APP_URL = "https://app.overmind.tech"
DEFAULT_STATE_FILE = "./overmind-state.json"


class ProviderConfig(BaseModel):
    """Connection settings for an Overmind instance."""

    api_key: SecretStr = Field(..., description="Overmind API key")
    app_url: HttpUrl = Field(
        default=DEFAULT_APP_URL,
        validate_default=True,
        description="Overmind application URL",
    )
    api_url: HttpUrl | None = Field(
        default=None,
        description="Overmind API URL (discovered from the app URL when unset)",
    )
    request_timeout_seconds: float = Field(
        default=30.0, gt=0, le=300.0, description="HTTP request timeout in seconds"
    )
    operation_timeout_seconds: float | None = Field(
        default=None,
        description="Deadline for each resource operation in seconds (None for no deadline)",
    )
    instance_retry_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retry attempts when discovering the instance's API URL",
    )
    instance_retry_delay: float = Field(
        default=1.0,
        ge=0.1,
        le=30.0,
        description="Initial delay between instance discovery retries in seconds",
    )

    @field_validator("api_key")
    def validate_api_key(cls, v: SecretStr) -> SecretStr:
        """Validate that API key is not empty."""
        value = v.get_secret_value()
        if not value or value.strip() == "":
            raise ValueError("API key cannot be empty")
        return SecretStr(value.strip())

    @field_validator("operation_timeout_seconds")
    def validate_operation_timeout(cls, v: float | None) -> float | None:
        """Validate that the operation deadline is positive when set."""
        if v is not None and v <= 0:
            raise ValueError("Operation timeout must be greater than zero")
        return v


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = Field(default="ERROR", description="Log level")
    format: str = Field(default="text", description="Log format (json or text)")

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @field_validator("format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v.lower() not in {"json", "text"}:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class Config(BaseModel):
    """Main configuration class for the Overmind provider."""

    provider: ProviderConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state_file: Path = Field(
        default=Path(DEFAULT_STATE_FILE),
        description="File holding the tracked state of managed sources",
    )

    model_config = {"validate_assignment": True}

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables.

        Returns:
            Config instance populated from environment variables.

        Raises:
            ConfigurationError: If OVERMIND_API_KEY is missing.
        """
        api_key = os.getenv("OVERMIND_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "Missing API Key: an Overmind API key must be provided via the "
                "OVERMIND_API_KEY environment variable"
            )

        # An empty OVERMIND_APP_URL falls back to the default like an unset one
        app_url = os.getenv("OVERMIND_APP_URL") or DEFAULT_APP_URL
        api_url = os.getenv("OVERMIND_API_URL") or None

        operation_timeout = os.getenv("OVERMIND_OPERATION_TIMEOUT")

        return cls(
            provider=ProviderConfig(
                api_key=api_key,
                app_url=app_url,
                api_url=api_url,
                request_timeout_seconds=float(
                    os.getenv("OVERMIND_REQUEST_TIMEOUT", "30.0")
                ),
                operation_timeout_seconds=(
                    float(operation_timeout) if operation_timeout else None
                ),
            ),
            logging=LoggingConfig(
                level=os.getenv("LOG_LEVEL", "ERROR"),
                format=os.getenv("LOG_FORMAT", "text"),
            ),
            state_file=state_file_from_env(),
        )

    @classmethod
    def from_file(cls, config_path: Path) -> "Config":
        """Create configuration from a YAML or JSON file.

        Values missing from the file's ``provider`` section are taken from
        OVERMIND_API_KEY and OVERMIND_APP_URL.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config instance populated from the file

        Raises:
            ConfigurationError: If the file is unreadable, has an unsupported
                format, or no API key is available
            FileNotFoundError: If the configuration file doesn't exist
        """
        import json

        import yaml

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        file_extension = config_path.suffix.lower()

        try:
            with open(config_path) as f:
                if file_extension == ".json":
                    config_data = json.load(f)
                elif file_extension in [".yaml", ".yml"]:
                    config_data = yaml.safe_load(f)
                else:
                    raise ConfigurationError(
                        f"Unsupported configuration file format: {file_extension}. Supported formats: .json, .yaml, .yml"
                    )
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

        config_data = config_data or {}
        provider_data = dict(config_data.get("provider") or {})
        if not provider_data.get("api_key"):
            provider_data["api_key"] = os.getenv("OVERMIND_API_KEY")
        if not provider_data.get("app_url") and os.getenv("OVERMIND_APP_URL"):
            provider_data["app_url"] = os.getenv("OVERMIND_APP_URL")
        if not provider_data.get("api_key"):
            raise ConfigurationError(
                "Missing API Key: an Overmind API key must be provided via the "
                "api_key provider setting or the OVERMIND_API_KEY environment variable"
            )

        return cls(**{**config_data, "provider": provider_data})


def state_file_from_env() -> Path:
    """Tracked state file named by OVERMIND_STATE_FILE, or the default."""
    return Path(os.getenv("OVERMIND_STATE_FILE") or DEFAULT_STATE_FILE)
