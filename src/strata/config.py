"""
Engine configuration for Strata.

Configuration is a small YAML file:

    audit_db: ./strata.db
    modules:
      - ./modules/base.yaml
      - ./modules/overrides/
    log_level: INFO
    page_size: 200

Relative paths are resolved against the directory of the config file.
Command-line options override the values loaded here.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from strata.errors import ConfigError
from strata.store.db import DEFAULT_PAGE_SIZE

DEFAULT_DB_PATH = Path("strata.db")


class EngineConfig(BaseModel):
    """
    Engine configuration.

    Attributes:
        audit_db: Path to the SQLite audit log
        modules: Module files or directories, in load order
        log_level: Standard logging level name
        page_size: Rows fetched per page when exporting audit entries
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    audit_db: Path = Field(default=DEFAULT_DB_PATH, description="Audit log database")
    modules: list[Path] = Field(default_factory=list, description="Module sources in order")
    log_level: str = Field(default="WARNING", description="Logging level name")
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, gt=0, le=10_000)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the level is a standard logging level."""
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level

    def resolve_paths(self, base_dir: Path) -> "EngineConfig":
        """Return a copy with relative paths anchored at base_dir."""
        def anchor(path: Path) -> Path:
            return path if path.is_absolute() else base_dir / path

        return self.model_copy(
            update={
                "audit_db": anchor(self.audit_db),
                "modules": [anchor(p) for p in self.modules],
            }
        )


def load_config(path: Path | str) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated EngineConfig with paths resolved against the file's directory

    Raises:
        ConfigError: If the file is missing, not valid YAML, or invalid
    """
    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(config_path=str(path), validation_error=str(e)) from e
    except yaml.YAMLError as e:
        raise ConfigError(config_path=str(path), validation_error=f"Invalid YAML: {e}") from e

    try:
        config = EngineConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(config_path=str(path), validation_error=str(e)) from e

    return config.resolve_paths(path.resolve().parent)
