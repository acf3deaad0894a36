# Path: chessarena/config.py
"""
Purpose: Runtime settings for the arena, read from the environment.
Usage: settings = Settings.from_env(); configure_logging(settings.log_level)
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class Settings(BaseModel):
    engine_cmd: str = "stockfish"
    owner_id: Optional[str] = None

    engine_timeout_ms: int = Field(15000, ge=100)
    handshake_timeout_ms: int = Field(3000, ge=100)
    engine_threads: int = Field(1, ge=1)
    engine_hash_mb: int = Field(16, ge=1)
    engine_retries: int = Field(1, ge=0, le=5)
    fallback_max_depth: int = Field(3, ge=1, le=4)

    time_limit_ms: int = Field(600000, ge=1000)
    autoplay_depth: int = Field(15, ge=1, le=30)
    nerf_depth: int = Field(2, ge=1, le=30)
    autoplay_min_delay_ms: int = Field(3000, ge=0)
    autoplay_max_delay_ms: int = Field(8000, ge=0)

    log_level: str = "INFO"

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_delay_window(self) -> "Settings":
        if self.autoplay_max_delay_ms < self.autoplay_min_delay_ms:
            raise ValueError("autoplay_max_delay_ms must be >= autoplay_min_delay_ms")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "engine_cmd": "UCI_ENGINE_CMD",
            "owner_id": "OWNER_ID",
            "engine_timeout_ms": "ENGINE_TIMEOUT_MS",
            "handshake_timeout_ms": "ENGINE_HANDSHAKE_MS",
            "engine_retries": "ENGINE_RETRIES",
            "fallback_max_depth": "FALLBACK_MAX_DEPTH",
            "time_limit_ms": "TIME_LIMIT_MS",
            "autoplay_depth": "AUTOPLAY_DEPTH",
            "nerf_depth": "NERF_DEPTH",
            "autoplay_min_delay_ms": "AUTOPLAY_MIN_DELAY_MS",
            "autoplay_max_delay_ms": "AUTOPLAY_MAX_DELAY_MS",
            "log_level": "LOG_LEVEL",
        }
        values = {}
        for field_name, var in env.items():
            raw = os.getenv(var)
            if raw:
                values[field_name] = raw
        return cls(**values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
