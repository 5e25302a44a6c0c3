"""
Configuration management for portprobe.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from portprobe.utils.exceptions import ConfigurationError

# Load environment variables from .env file if it exists
load_dotenv()

CONFIG_PATH_ENV = "PORTPROBE_CONFIG"

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "PORTPROBE_TIMEOUT_MS": ("scanning", "timeout_ms"),
    "PORTPROBE_CONCURRENCY": ("scanning", "concurrency"),
    "PORTPROBE_THEME": ("ui", "theme"),
}


class ScanningConfig(BaseModel):
    """Scanning-related configuration."""

    model_config = ConfigDict(extra="ignore")

    timeout_ms: int = Field(default=2000, gt=0)
    banner_timeout_ms: Optional[int] = Field(default=None, gt=0)
    concurrency: int = Field(default=100, ge=1)
    default_ports: str = "1-1024"
    show_closed: bool = False
    banner_grab: bool = False


class UIConfig(BaseModel):
    """UI-related configuration."""

    model_config = ConfigDict(extra="ignore")

    theme: str = "matrix"
    color_output: bool = True
    show_progress: bool = True


class OutputConfig(BaseModel):
    """Output-related configuration."""

    model_config = ConfigDict(extra="ignore")

    default_format: str = "text"  # text, table, list, json
    show_reasons: bool = False


class Config(BaseModel):
    """Main configuration model."""

    model_config = ConfigDict(extra="ignore")

    scanning: ScanningConfig = Field(default_factory=ScanningConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "Config":
        """Create a Config instance from a dictionary."""
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the config to a dictionary."""
        return self.model_dump()

    def save(self, path: Optional[Path] = None) -> Path:
        """Save the configuration to a YAML file and return its path."""
        if path is None:
            path = self._get_default_config_path()

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)
        return path

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> "Config":
        """
        Load configuration from a YAML file, then apply environment overrides.

        A missing file yields the defaults.

        Raises:
            ConfigurationError: If the file is not valid YAML or holds invalid values
        """
        if environ is None:
            environ = os.environ
        if path is None:
            path = cls._get_default_config_path(environ)

        config_dict: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    config_dict = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse config file: {e}", path=str(path)) from e
            if not isinstance(config_dict, dict):
                raise ConfigurationError("Config file must contain a mapping", path=str(path))

        # An empty section ("scanning:") loads as None
        for section, values in list(config_dict.items()):
            if values is None:
                config_dict[section] = {}

        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                section_dict = config_dict.setdefault(section, {})
                if not isinstance(section_dict, dict):
                    raise ConfigurationError(
                        f"Config section '{section}' must be a mapping", path=str(path)
                    )
                section_dict[key] = value

        try:
            return cls.from_dict(config_dict)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", path=str(path)) from e

    @classmethod
    def _get_default_config_path(cls, environ: Optional[Dict[str, str]] = None) -> Path:
        """Get the configuration file path (PORTPROBE_CONFIG or ~/.portprobe/config.yaml)."""
        if environ is None:
            environ = os.environ
        override = environ.get(CONFIG_PATH_ENV)
        if override:
            return Path(override).expanduser()
        return Path.home() / ".portprobe" / "config.yaml"


_settings: Optional[Config] = None


def get_settings() -> Config:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Config.load()
    return _settings
