"""
Configuration management for tunerhub.
Uses pydantic-settings for environment variable loading and
pydantic models for the YAML source files.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tunerhub.models.channel import MappingOverride

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "tunerhub"
    app_version: str = "0.4.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 34400
    # Overrides the request-derived base URL in lineups, playlists and guides
    public_base_url: Optional[str] = None

    cors_origins: list[str] = ["*"]

    # Rate Limiting (admin endpoints)
    rate_limit_per_minute: int = 60

    # Paths
    config_dir: str = "config"
    data_dir: str = "data"

    # HDHomeRun identity advertised by /discover.json
    friendly_name: str = "tunerhub"
    model_number: str = "HDHR3-US"
    firmware_name: str = "tunerhub"
    firmware_version: str = "20250620"
    device_id: str = "12345678"
    device_auth: str = "tunerhub"
    tuner_count: int = 4

    # Timeouts (seconds)
    head_timeout: float = 5.0
    upstream_timeout: float = 15.0
    source_timeout: float = 30.0
    epg_timeout: float = 30.0

    # Cache TTLs (seconds, 0 = never expire)
    lineup_cache_ttl: int = 300
    playlist_cache_ttl: int = 300
    epg_cache_ttl: int = 0

    # Background work
    epg_refresh_hours: float = 6  # 0 = disabled
    health_check_minutes: int = 0  # 0 = disabled
    source_concurrency: int = 3

    # Usage tracking
    usage_tick_seconds: float = 10.0
    usage_idle_seconds: float = 45.0

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="TUNERHUB_", env_file=".env")

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir)

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class M3USourceConfig(BaseModel):
    """One channel source: an M3U playlist or an HDHomeRun device."""
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    type: Literal["m3u", "hdhomerun"] = "m3u"

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value):
        return value.lower() if isinstance(value, str) else value


class EPGSourceConfig(BaseModel):
    """One XMLTV guide source, scoped to the channel source of the same name."""
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)


class M3UFile(BaseModel):
    urls: list[M3USourceConfig] = Field(default_factory=list)


class EPGFile(BaseModel):
    urls: list[EPGSourceConfig] = Field(default_factory=list)


class SourcesConfig(BaseModel):
    """Everything the directory and guide merge read from config_dir."""
    m3u: list[M3USourceConfig] = Field(default_factory=list)
    epg: list[EPGSourceConfig] = Field(default_factory=list)
    channel_map: dict[str, MappingOverride] = Field(default_factory=dict)


def _read_yaml(path: Path):
    """Read a YAML file; returns None when missing or unparseable."""
    if not path.exists():
        logger.warning(f"Config file not found: {path}, using defaults")
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML in {path}: {e}")
        logger.info("Hint: check indentation (spaces, not tabs) and quoting")
        return None


def load_sources(config_dir: str | Path) -> SourcesConfig:
    """
    Load and validate m3u.yaml, epg.yaml and channel-map.yaml.

    Each file is validated independently; an invalid file falls back to its
    default so one broken file does not take the others down.
    """
    config_dir = Path(config_dir)
    sources = SourcesConfig()

    raw = _read_yaml(config_dir / "m3u.yaml")
    if raw is not None:
        try:
            sources.m3u = M3UFile.model_validate(raw).urls
        except ValidationError as e:
            logger.error(f"Validation errors in m3u.yaml: {e}")

    raw = _read_yaml(config_dir / "epg.yaml")
    if raw is not None:
        try:
            sources.epg = EPGFile.model_validate(raw).urls
        except ValidationError as e:
            logger.error(f"Validation errors in epg.yaml: {e}")

    raw = _read_yaml(config_dir / "channel-map.yaml")
    if raw is not None:
        try:
            sources.channel_map = {
                str(key): MappingOverride.model_validate(value)
                for key, value in (raw or {}).items()
            }
        except (ValidationError, AttributeError) as e:
            logger.error(f"Validation errors in channel-map.yaml: {e}")

    logger.info(
        f"Loaded {len(sources.m3u)} channel sources, {len(sources.epg)} guide sources, "
        f"{len(sources.channel_map)} channel mappings"
    )
    return sources
