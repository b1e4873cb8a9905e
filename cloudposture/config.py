"""Configuration management for cloudposture."""

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from cloudposture.core.exceptions import ConfigurationError
from cloudposture.core.scoring import ScoringPolicy


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class PostureConfig(BaseSettings):
    """Main configuration for cloudposture."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDPOSTURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    log_json: bool = Field(
        default=False,
        description="Render log events as JSON instead of console lines"
    )

    subscription_ids: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Subscriptions to assess (all resources in the snapshot when empty)"
    )

    snapshot_path: Optional[Path] = Field(
        default=None,
        description="Path to a JSON resource snapshot"
    )

    # Delegated identity
    client_id: Optional[str] = Field(
        default=None,
        description="OAuth client id for delegated assessments"
    )

    organization_id: Optional[str] = Field(
        default=None,
        description="Organization the delegated token was issued for"
    )

    scoring: ScoringPolicy = Field(
        default_factory=ScoringPolicy,
        description="Scoring weights, penalties and thresholds"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {', '.join(valid_levels)}")
        return v

    @field_validator("subscription_ids", mode="before")
    @classmethod
    def split_subscription_ids(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @model_validator(mode='after')
    def validate_production_settings(self) -> 'PostureConfig':
        """Validate production-specific settings."""
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError("Debug mode must be disabled in production")
            if self.log_level == "DEBUG":
                raise ValueError("Log level should not be DEBUG in production")
        if bool(self.client_id) != bool(self.organization_id):
            raise ValueError("client_id and organization_id must be set together")
        return self

    @property
    def has_delegated_identity(self) -> bool:
        return bool(self.client_id and self.organization_id)

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Args:
            mask_secrets: If True, mask sensitive values

        Returns:
            Dictionary representation of configuration
        """
        config_dict = self.model_dump(mode="json")

        if mask_secrets:
            for field in ("client_id", "organization_id"):
                if config_dict.get(field):
                    config_dict[field] = "***MASKED***"

        return config_dict


def load_config(**overrides: Any) -> PostureConfig:
    """
    Load configuration from the environment with optional overrides.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    kwargs = {k: v for k, v in overrides.items() if v is not None}
    try:
        return PostureConfig(**kwargs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config_from_file(config_file: Path) -> PostureConfig:
    """
    Load configuration from a specific file.

    Args:
        config_file: Path to a YAML or JSON configuration file

    Returns:
        Loaded configuration
    """
    config_file = Path(config_file)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    if config_file.suffix == '.json':
        with open(config_file, encoding="utf-8") as f:
            config_data = json.load(f)
    elif config_file.suffix in ['.yaml', '.yml']:
        with open(config_file, encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        raise ValueError(f"Unsupported configuration file format: {config_file.suffix}")

    return load_config(**config_data)


# Global configuration instance
_global_config: Optional[PostureConfig] = None


def get_config() -> PostureConfig:
    """
    Get the global configuration instance.

    Creates one from environment variables and defaults if none is set.
    """
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: Optional[PostureConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set as global, or None to reset
    """
    global _global_config
    _global_config = config
