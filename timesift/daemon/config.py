"""Configuration management for timesift."""

from pathlib import Path
from typing import Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


def _positive(value, name: str):
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


class SearchConfig(BaseModel):
    debounce_ms: int = 300
    history_limit: int = 20
    max_suggestions: int = 10
    history_suggestions: int = 5
    app_suggestions: int = 3
    project_suggestions: int = 3
    slow_search_seconds: float = 1.0

    @field_validator('history_limit', 'max_suggestions', 'slow_search_seconds')
    @classmethod
    def validate_positive(cls, v, info):
        return _positive(v, info.field_name)

    @field_validator('debounce_ms')
    @classmethod
    def validate_debounce(cls, v: int) -> int:
        if v < 0:
            raise ValueError("debounce_ms cannot be negative")
        return v


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl_seconds: float = 300
    max_entries: int = 50

    @field_validator('ttl_seconds', 'max_entries')
    @classmethod
    def validate_positive(cls, v, info):
        return _positive(v, info.field_name)


class IndexConfig(BaseModel):
    window_title_sample: int = 1000
    common_terms_limit: int = 20

    @field_validator('window_title_sample', 'common_terms_limit')
    @classmethod
    def validate_positive(cls, v, info):
        return _positive(v, info.field_name)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None
    rotation: str = "1 day"
    retention: str = "7 days"

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Config(BaseModel):
    """Main configuration for the timesift search engine."""

    data_path: Optional[Path] = None
    state_path: Optional[Path] = None
    search: SearchConfig = Field(default_factory=SearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('data_path', 'state_path')
    @classmethod
    def expand_path(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return v
        return Path(v).expanduser()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            # Try default locations
            candidates = [
                Path("timesift.yaml"),
                Path.home() / ".config" / "timesift" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load_or_default(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration, falling back to defaults when no file exists."""
        try:
            return cls.load(config_path)
        except FileNotFoundError as e:
            logger.debug(f"Using default configuration: {e}")
            return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
