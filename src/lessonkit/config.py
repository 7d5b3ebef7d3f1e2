"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (LESSONKIT__CACHE__TRUST_MODE=true)
  2. lessonkit.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("lessonkit")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first lessonkit.yaml found, or None."""
    candidates = [
        Path("lessonkit.yaml"),
        Path(platformdirs.user_config_dir("lessonkit")) / "lessonkit.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    # Deployed installs: source files are immutable, skip fingerprint checks.
    trust_mode: bool = False
    # Sub-millisecond mtime jitter between stat calls is not a change.
    mtime_epsilon_ms: float = Field(default=1.0, ge=0)
    string_ttl_hours: int = 24
    cleanup_grace_days: int = 7


class CompilerSettings(BaseModel):
    # Suffix document cache keys with the content hash of the document.
    content_hash_keys: bool = False


class DiffSettings(BaseModel):
    max_changed_chars: int = 120
    max_changed_ratio: float = Field(default=0.6, gt=0, le=1)


class HighlightSettings(BaseModel):
    style_prefix: str = "tok-"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: LESSONKIT__DIFF__MAX_CHANGED_CHARS=80
        env_prefix="LESSONKIT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    cache: CacheSettings = CacheSettings()
    compiler: CompilerSettings = CompilerSettings()
    diff: DiffSettings = DiffSettings()
    highlight: HighlightSettings = HighlightSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
