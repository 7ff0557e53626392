from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from kairos.domain.constants import (
    DEFAULT_CACHE_TTL,
    DEFAULT_DATABASE_URL,
    DEFAULT_QUERY_TIMEOUT,
    DEFAULT_ROW_CAP,
)

CONFIG_FILES = [
    Path.home() / ".config/kairos/config.toml",
    Path.home() / ".kairos.toml",
]


class AnalyticsPolicy(BaseModel):
    """
    Every classification threshold the analyzers use.

    Kept apart from the algorithms so thresholds can be tuned per deployment
    (``[policy]`` table in the TOML file, or KAIROS_POLICY__<FIELD> env vars)
    and swapped in tests.
    """

    # Velocity
    mastery_interval_days: float = 21.0
    trend_min_points: int = 3
    trend_slope_tolerance: float = 0.10  # fraction of the mean bucket value

    # Struggle
    struggle_window_days: int = 90
    pattern_window_days: int = 90  # history read by interference, fatigue, circadian
    struggle_half_life_days: float = 14.0
    struggle_error_weight: float = 0.6
    struggle_lapse_weight: float = 0.25
    struggle_time_weight: float = 0.15
    lapse_saturation: int = 3
    deck_top_n: int = 5

    # Interference
    interference_window: int = 5  # max intervening reviews
    interference_ratio: float = 1.5
    interference_min_co_occurrence: int = 3
    interference_limit: int = 20

    # Prerequisites
    prerequisite_accuracy_floor: float = 0.70
    prerequisite_struggle_threshold: float = 0.5

    # Fatigue / session health
    fatigue_accuracy_drop: float = 0.15
    fatigue_min_sessions: int = 5
    fatigue_length_factor: float = 0.85
    session_min_reviews: int = 5
    health_poor_accuracy_drop: float = 0.15
    health_poor_pace_decay: float = 0.30
    health_declining_accuracy_drop: float = 0.05
    health_declining_pace_decay: float = 0.15

    # Circadian
    circadian_min_samples: int = 10
    circadian_min_buckets: int = 2  # eligible hours needed to name best/worst

    # Difficulty
    difficulty_min_population: int = 5
    performance_band: float = 0.10

    @field_validator("struggle_half_life_days")
    @classmethod
    def positive_half_life(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("struggle_half_life_days must be positive")
        return v


class AppConfig(BaseSettings):
    """
    Configuration model for Kairos.
    Supports loading from:
    1. Environment variables (KAIROS_*)
    2. Config file (~/.config/kairos/config.toml)
    3. Manual overrides (CLI / server)
    """

    model_config = SettingsConfigDict(
        env_prefix="KAIROS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Store
    backend: Literal["sql", "memory"] = "sql"
    database_url: str = DEFAULT_DATABASE_URL
    fixture_path: Path | None = None  # events file for the memory backend
    max_rows_per_query: int = DEFAULT_ROW_CAP

    # Execution
    query_timeout: float = DEFAULT_QUERY_TIMEOUT
    cache_enabled: bool = False
    cache_ttl: float = DEFAULT_CACHE_TTL
    log_level: str = "INFO"

    policy: AnalyticsPolicy = Field(default_factory=AnalyticsPolicy)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        # Highest priority first: explicit overrides, then env, then file
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("fixture_path", mode="before")
    @classmethod
    def resolve_fixture_path(cls, v: Any) -> Path | None:
        if v:
            return Path(v).resolve()
        return None

    @field_validator("max_rows_per_query")
    @classmethod
    def positive_row_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_rows_per_query must be at least 1")
        return v


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/kairos/config.toml (if exists)
    3. Environment variables (KAIROS_*)
    4. cli_overrides (None values are ignored)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
