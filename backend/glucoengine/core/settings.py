import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


InsulinCurveName = Literal["rapid-acting", "bilinear", "exponential", "walsh", "fiasp", "novorapid", "linear"]


class ForecastConfig(BaseModel):
    bg_min: float = Field(default=36.0, gt=0)
    bg_max: float = Field(default=400.0, gt=0)
    cone_factor: float = Field(default=2.0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ForecastConfig":
        if self.bg_min >= self.bg_max:
            raise ValueError("bg_min must be lower than bg_max")
        return self


class KineticsConfig(BaseModel):
    stale_minutes: float = Field(default=30.0, gt=0)
    future_tolerance_minutes: float = Field(default=5.0, ge=0)
    default_curve: InsulinCurveName = "rapid-acting"
    peak_minutes: float = Field(default=75.0, gt=0)
    liver_sens_ratio: float = Field(default=8.0, ge=0)


class CarbHeuristicsConfig(BaseModel):
    high_fat_grams: float = Field(default=20.0, ge=0)
    high_fat_multiplier: float = Field(default=0.6, gt=0)
    fast_multiplier: float = Field(default=2.0, gt=0)
    high_fat_keywords: list[str] = Field(
        default_factory=lambda: ["pizza", "fat", "cheese", "fried", "burger", "cream"]
    )
    fast_keywords: list[str] = Field(
        default_factory=lambda: ["glucose", "tablet", "juice", "dextrose", "hypo", "gel"]
    )

    @field_validator("high_fat_keywords", "fast_keywords", mode="before")
    def _split_keywords(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("high_fat_keywords", "fast_keywords")
    def _lower_keywords(cls, v: list[str]) -> list[str]:
        return [item.lower() for item in v]


class ProfileConfig(BaseModel):
    default_dia: float = Field(default=3.0, gt=0)
    default_carbs_hr: float = Field(default=20.0, gt=0)
    default_carb_delay: float = Field(default=20.0, ge=0)
    default_sens: float = Field(default=50.0, gt=0)
    default_timezone: str = "UTC"
    cache_max_entries: int = Field(default=4096, ge=0)


class EngineSettings(BaseModel):
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)
    kinetics: KineticsConfig = Field(default_factory=KineticsConfig)
    carbs: CarbHeuristicsConfig = Field(default_factory=CarbHeuristicsConfig)
    profile: ProfileConfig = Field(default_factory=ProfileConfig)


ENV_PREFIX = "GLUCOENGINE_"
DEFAULT_CONFIG_PATH = "config/glucoengine.json"

# env suffix -> (section, key)
_ENV_KEYS: dict[str, tuple[str, str]] = {
    "BG_MIN": ("forecast", "bg_min"),
    "BG_MAX": ("forecast", "bg_max"),
    "CONE_FACTOR": ("forecast", "cone_factor"),
    "STALE_MINUTES": ("kinetics", "stale_minutes"),
    "FUTURE_TOLERANCE_MINUTES": ("kinetics", "future_tolerance_minutes"),
    "INSULIN_CURVE": ("kinetics", "default_curve"),
    "INSULIN_PEAK_MINUTES": ("kinetics", "peak_minutes"),
    "LIVER_SENS_RATIO": ("kinetics", "liver_sens_ratio"),
    "HIGH_FAT_GRAMS": ("carbs", "high_fat_grams"),
    "HIGH_FAT_MULTIPLIER": ("carbs", "high_fat_multiplier"),
    "FAST_CARB_MULTIPLIER": ("carbs", "fast_multiplier"),
    "HIGH_FAT_KEYWORDS": ("carbs", "high_fat_keywords"),
    "FAST_CARB_KEYWORDS": ("carbs", "fast_keywords"),
    "DEFAULT_DIA": ("profile", "default_dia"),
    "DEFAULT_CARBS_HR": ("profile", "default_carbs_hr"),
    "DEFAULT_CARB_DELAY": ("profile", "default_carb_delay"),
    "DEFAULT_SENS": ("profile", "default_sens"),
    "TIMEZONE": ("profile", "default_timezone"),
    "PROFILE_CACHE_SIZE": ("profile", "cache_max_entries"),
}


def _config_path() -> Path:
    return Path(os.environ.get(f"{ENV_PREFIX}CONFIG_PATH", DEFAULT_CONFIG_PATH)).expanduser()


def _load_file_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid JSON configuration at {path}") from exc


def _load_env() -> dict[str, Any]:
    env_config: dict[str, Any] = {}
    for suffix, (section, key) in _ENV_KEYS.items():
        raw = os.environ.get(f"{ENV_PREFIX}{suffix}")
        if raw:
            env_config.setdefault(section, {})[key] = raw
    return env_config


def merge_settings(env_config: dict[str, Any], file_config: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for section in ("forecast", "kinetics", "carbs", "profile"):
        merged[section] = {**file_config.get(section, {}), **env_config.get(section, {})}
    return merged


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    env_config = _load_env()
    file_config = _load_file_config(_config_path())
    merged = merge_settings(env_config=env_config, file_config=file_config)
    try:
        return EngineSettings.model_validate(merged)
    except ValidationError as exc:
        raise RuntimeError(f"Configuration error: {exc}") from exc


__all__ = ["EngineSettings", "get_settings", "merge_settings"]
