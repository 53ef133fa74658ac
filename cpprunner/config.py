"""Runtime configuration loaded from environment variables.

Usage:
    from cpprunner.config import get_settings
    settings = get_settings()
    settings.timeout_ms
"""

from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CORS_ORIGINS = (
    "https://clasesparticularesutn.com.ar,"
    "http://localhost:3000,"
    "http://127.0.0.1:3000"
)


class RunnerSettings(BaseSettings):
    """Limits and paths shared read-only by every pipeline run."""

    model_config = SettingsConfigDict(env_prefix="CPPRUNNER_", extra="ignore", frozen=True)

    scratch_dir: str = Field(
        default=os.path.join(tempfile.gettempdir(), "cpprunner"),
        description="Shared directory for per-run source files and binaries",
    )
    compiler: str = Field(default="g++", description="Compiler executable")
    compile_flags_raw: str = Field(
        default="-std=c++17 -O2",
        validation_alias=AliasChoices("CPPRUNNER_COMPILE_FLAGS", "compile_flags_raw"),
    )
    max_output_bytes: int = Field(default=100 * 1024, gt=0, description="Per-stream output cap")
    timeout_ms: int = Field(default=5000, gt=0, description="Wall-clock deadline for compile and run")
    kill_grace_ms: int = Field(default=500, ge=0, description="Wait after SIGTERM before SIGKILL")
    compile_cpu_seconds: int = Field(default=5, gt=0)
    compile_memory_megabytes: int = Field(default=512, gt=0)
    run_cpu_seconds: Optional[int] = Field(default=None, gt=0)
    run_memory_megabytes: Optional[int] = Field(default=None, gt=0)
    run_file_size_megabytes: Optional[int] = Field(default=64, gt=0)

    cors_origins_raw: str = Field(
        default=DEFAULT_CORS_ORIGINS,
        validation_alias=AliasChoices("CPPRUNNER_CORS_ORIGINS", "cors_origins_raw"),
    )
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "CPPRUNNER_PORT", "port"))
    log_level: str = Field(default="INFO")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def compile_flags(self) -> List[str]:
        return self.compile_flags_raw.split()

    @property
    def cors_origins(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [o.strip() for o in self.cors_origins_raw.split(",") if o.strip()]

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@lru_cache
def get_settings() -> RunnerSettings:
    """Get cached settings instance, built once per process."""
    return RunnerSettings()


def clear_settings_cache() -> None:
    """Clear cached settings (useful for testing)."""
    get_settings.cache_clear()
