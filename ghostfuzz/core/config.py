"""Core configuration for the ghostfuzz engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="GHOSTFUZZ_",
        case_sensitive=False,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "ghostfuzz"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Campaign defaults ────────────────────────────────────────────────
    runs: int = 256
    depth: int = 50
    seed: int = 0
    max_rejects: int = 65_536
    fail_on_revert: bool = False
    shrink_run_limit: int = 5_000
    actors: int = 5
    dictionary_weight: float = 0.4
    workers: int = 1
    max_duration_sec: float | None = None


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()


class FuzzConfig(BaseModel):
    """Configuration for one invariant fuzzing campaign.

    ``seed`` has no default: two campaigns only replay identically when
    they are pinned to the same seed, so callers must choose one.
    """

    runs: int = Field(default=256, ge=1)
    depth: int = Field(default=50, ge=1)
    seed: int = Field(ge=0)
    max_rejects: int = Field(default=65_536, ge=0)
    fail_on_revert: bool = False
    shrink_run_limit: int = Field(default=5_000, ge=0)
    shrink: bool = True
    actors: int = Field(default=5, ge=1)
    actor_labels: list[str] | None = None
    dictionary: list[int] = Field(default_factory=list)
    dictionary_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    workers: int = Field(default=1, ge=1)
    max_duration_sec: float | None = Field(default=None, gt=0)
    continue_on_failure: bool = False
    progress_interval: int = Field(default=100, ge=1)

    @field_validator("actor_labels")
    @classmethod
    def _unique_labels(cls, labels: list[str] | None) -> list[str] | None:
        if labels is not None:
            if not labels:
                raise ValueError("actor_labels must not be empty")
            if len(set(labels)) != len(labels):
                raise ValueError("actor_labels must be unique")
        return labels

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, **overrides: Any
    ) -> FuzzConfig:
        """Build a campaign config from environment settings plus overrides."""
        s = settings or get_settings()
        values: dict[str, Any] = {
            "runs": s.runs,
            "depth": s.depth,
            "seed": s.seed,
            "max_rejects": s.max_rejects,
            "fail_on_revert": s.fail_on_revert,
            "shrink_run_limit": s.shrink_run_limit,
            "actors": s.actors,
            "dictionary_weight": s.dictionary_weight,
            "workers": s.workers,
            "max_duration_sec": s.max_duration_sec,
        }
        values.update(overrides)
        return cls(**values)
