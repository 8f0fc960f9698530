"""
settings_loader.py

Configuration management for the OPTICS reachability service.
Loads and validates settings from YAML configuration with environment variable substitution.

Features:
- Pydantic models for run parameters, storage and logging
- ${VAR_NAME} / ${VAR_NAME:default} environment substitution
- Cached, process-wide settings via ConfigManager
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models (Pydantic)
# =============================================================================

class ServiceSettings(BaseModel):
    """General service settings."""
    name: str = Field(default="optics-reachability", description="Service name")
    version: str = Field(default="1.0.0", description="Service version")
    environment: str = Field(default="production", description="Environment (development, staging, production)")


class OPTICSSettings(BaseModel):
    """OPTICS run parameters."""
    epsilon: float = Field(default=1.0, ge=0.0, description="Neighborhood radius in the metric's domain")
    min_pts: int = Field(default=5, ge=1, description="Neighbours (self included) required for a core object")
    metric: str = Field(default="euclidean", description="Distance metric (euclidean, manhattan, cosine)")
    neighborhood: str = Field(default="brute_force", description="Range query backend (brute_force or faiss)")
    verbose: bool = Field(default=False, description="Log expansion progress")
    progress_interval: int = Field(default=100, ge=1, description="Commits between progress log lines")
    run_retries: int = Field(default=1, ge=1, description="Attempts for a whole run when a range query fails")

    @field_validator("metric", "neighborhood")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.lower()


class FAISSSettings(BaseModel):
    """FAISS configuration."""
    use_gpu: bool = Field(default=False, description="Move the range query index to GPU when available")


class JSONLStorageSettings(BaseModel):
    """JSONL export configuration."""
    enabled: bool = Field(default=True, description="Write cluster orders as JSONL")
    output_dir: str = Field(default="data/cluster_orders", description="Output directory")
    file_pattern: str = Field(default="cluster_order_{run_id}_{timestamp}.jsonl", description="File naming pattern")


class StorageSettings(BaseModel):
    """Storage configuration."""
    jsonl: JSONLStorageSettings = Field(default_factory=JSONLStorageSettings)


class FileLoggingSettings(BaseModel):
    """File logging configuration."""
    enabled: bool = Field(default=False, description="Enable file logging")
    path: str = Field(default="logs/optics_reachability.log", description="Log file path")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or console)")
    file: FileLoggingSettings = Field(default_factory=FileLoggingSettings)

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class Settings(BaseModel):
    """Root configuration model."""
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    optics: OPTICSSettings = Field(default_factory=OPTICSSettings)
    faiss: FAISSSettings = Field(default_factory=FAISSSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# =============================================================================
# Environment Substitution
# =============================================================================

_ENV_PLACEHOLDER = re.compile(r"\$\{(?P<name>[^}:]+)(?::(?P<default>[^}]*))?\}")


def substitute_env_vars(value: Any) -> Any:
    """
    Replace ${NAME} and ${NAME:default} placeholders in every string of a
    parsed YAML document. Unset variables without a default become "".
    """
    if isinstance(value, dict):
        return {key: substitute_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    if isinstance(value, str):
        return _ENV_PLACEHOLDER.sub(
            lambda match: os.environ.get(match["name"], match["default"] or ""),
            value,
        )
    return value


# =============================================================================
# Configuration Manager (Singleton)
# =============================================================================

class ConfigManager:
    """
    Process-wide holder of the validated Settings.

    The first load wins and is cached; reload_config() replaces the cache and
    reset() drops it.
    """

    _instance: Optional["ConfigManager"] = None
    _settings: Optional[Settings] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @staticmethod
    def _default_locations() -> List[Path]:
        locations = [Path("config/settings.yaml"), Path("../config/settings.yaml")]
        env_path = os.getenv("OPTICS_CONFIG_PATH")
        if env_path:
            locations.insert(0, Path(env_path))
        return locations

    @classmethod
    def _find_config_file(cls) -> Optional[Path]:
        return next((path for path in cls._default_locations() if path.is_file()), None)

    @staticmethod
    def _read_settings(path: Path) -> Settings:
        logger.info(f"Loading configuration from: {path}")
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse {path}: {e}")
            raise ValueError(f"Invalid YAML configuration in {path}: {e}") from e

        try:
            return Settings.model_validate(substitute_env_vars(raw))
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ValueError(f"Invalid configuration in {path}: {e}") from e

    @classmethod
    def load_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Load, validate and cache settings.

        Args:
            config_path: Explicit YAML file. When omitted, $OPTICS_CONFIG_PATH,
                config/settings.yaml and ../config/settings.yaml are tried in
                that order, falling back to built-in defaults.

        Returns:
            The cached Settings

        Raises:
            FileNotFoundError: If config_path is given but does not exist
            ValueError: If the YAML cannot be parsed or fails validation
        """
        if cls._settings is not None:
            return cls._settings

        if config_path is not None:
            path = Path(config_path)
            if not path.is_file():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
        else:
            path = cls._find_config_file()

        if path is None:
            logger.warning("No configuration file found, using built-in defaults")
            cls._settings = Settings()
        else:
            cls._settings = cls._read_settings(path)
            logger.info("Configuration loaded and validated successfully")
        return cls._settings

    @classmethod
    def get_settings(cls) -> Settings:
        """Cached settings, loading them from the default locations on first use."""
        return cls._settings if cls._settings is not None else cls.load_config()

    @classmethod
    def reload_config(cls, config_path: Optional[str] = None) -> Settings:
        """Discard the cache and load again."""
        cls._settings = None
        return cls.load_config(config_path)

    @classmethod
    def reset(cls) -> None:
        """Drop cached settings (used by tests)."""
        cls._settings = None


def get_settings() -> Settings:
    """Module-level shortcut for ConfigManager.get_settings()."""
    return ConfigManager.get_settings()
