"""
Configuration management for procwarden.

This module provides configuration loading, validation, and management
for the process runner, its logging and its metrics.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from procwarden.core.exceptions import ConfigError


class RunnerConfig(BaseModel):
    """Process runner settings."""

    default_timeout: float = Field(
        60.0, description="Deadline in seconds when a run does not specify one"
    )
    max_reap_depth: int = Field(
        32, description="Maximum depth of the process tree walked on timeout"
    )
    kill_wait_timeout: float = Field(
        5.0, description="Seconds to wait for a killed root process to be reaped"
    )
    stream_limit: int = Field(
        1024 * 1024, description="Buffer size in bytes of each output pipe reader"
    )
    encoding: str = Field("utf-8", description="Encoding of the child's output")
    decode_errors: str = Field(
        "replace", description="Error handler used when decoding output"
    )

    @field_validator("default_timeout", "kill_wait_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate that durations are positive."""
        if v <= 0:
            raise ValueError(f"Invalid duration: {v}. Must be greater than 0")
        return v

    @field_validator("max_reap_depth", "stream_limit")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Invalid value: {v}. Must be at least 1")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration settings."""

    level: str = Field("INFO", description="Logging level")
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    file: Optional[str] = Field(None, description="JSON log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(
                f"Invalid logging level: {v}. Must be one of {valid_levels}"
            )
        return v.upper()


class MetricsConfig(BaseModel):
    """Metrics configuration settings."""

    enabled: bool = Field(True, description="Enable Prometheus metrics")
    namespace: str = Field("procwarden", description="Prometheus metrics namespace")


class Config(BaseModel):
    """Main configuration class for procwarden."""

    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @classmethod
    def load_from_file(cls, config_path: Union[str, Path]) -> "Config":
        """
        Load configuration from a YAML or JSON file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config instance

        Raises:
            ConfigError: If configuration file cannot be loaded or parsed
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        suffix = config_path.suffix.lower()
        if suffix not in [".yaml", ".yml", ".json"]:
            raise ConfigError(f"Unsupported configuration file format: {suffix}")

        try:
            with open(config_path, "r") as f:
                if suffix == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration: {e}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to parse JSON configuration: {e}")

        try:
            return cls(**(data or {}))
        except ValueError as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}")

    @classmethod
    def load_from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Returns:
            Config instance with values from environment variables
        """
        config_data: Dict[str, Any] = {}

        runner_config: Dict[str, Any] = {}
        if os.getenv("PROCWARDEN_DEFAULT_TIMEOUT"):
            runner_config["default_timeout"] = float(
                os.getenv("PROCWARDEN_DEFAULT_TIMEOUT")
            )
        if os.getenv("PROCWARDEN_MAX_REAP_DEPTH"):
            runner_config["max_reap_depth"] = int(os.getenv("PROCWARDEN_MAX_REAP_DEPTH"))
        if os.getenv("PROCWARDEN_KILL_WAIT_TIMEOUT"):
            runner_config["kill_wait_timeout"] = float(
                os.getenv("PROCWARDEN_KILL_WAIT_TIMEOUT")
            )
        if runner_config:
            config_data["runner"] = runner_config

        logging_config = {}
        if os.getenv("LOG_LEVEL"):
            logging_config["level"] = os.getenv("LOG_LEVEL")
        if os.getenv("LOG_FILE"):
            logging_config["file"] = os.getenv("LOG_FILE")
        if logging_config:
            config_data["logging"] = logging_config

        if os.getenv("PROCWARDEN_METRICS_ENABLED"):
            config_data["metrics"] = {
                "enabled": os.getenv("PROCWARDEN_METRICS_ENABLED").lower() == "true"
            }

        try:
            return cls(**config_data)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration in environment: {e}")

    def save_to_file(self, config_path: Union[str, Path]) -> None:
        """
        Save configuration to a YAML file.

        Args:
            config_path: Path where to save the configuration

        Raises:
            ConfigError: If configuration cannot be saved
        """
        config_path = Path(config_path)

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(config_path, "w") as f:
                yaml.dump(self.model_dump(), f, default_flow_style=False, indent=2)

        except OSError as e:
            raise ConfigError(f"Failed to save configuration: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key (supports dot notation, e.g., 'runner.encoding')
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        value: Any = self.model_dump()

        try:
            for k in key.split("."):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default


# Global configuration instance
config = Config()


def get_config() -> Config:
    """Get the global configuration."""
    return config


def set_config(new_config: Config) -> None:
    """Replace the global configuration."""
    global config
    config = new_config
