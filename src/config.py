#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Configuration of the reconciliation engine, loaded from environment variables."""

import logging
import os

from pydantic import BaseModel, field_validator

VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}


class ReconcilerConfig(BaseModel):
    """ReconcilerConfig defines the controller mode the engine runs in."""

    ext_auth_enabled: bool = True
    field_manager: str = "api-gateway"
    log_level: str = "info"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that the log level is one of the supported levels."""
        if value.lower() not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}. Must be one of {VALID_LOG_LEVELS}")
        return value.lower()


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"APIGATEWAY_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    return _env(key, str(default).lower()).lower() in ("true", "1", "yes")


def load_config() -> ReconcilerConfig:
    """Load configuration from APIGATEWAY_* environment variables."""
    return ReconcilerConfig(
        ext_auth_enabled=_env_bool("EXT_AUTH_ENABLED", True),
        field_manager=_env("FIELD_MANAGER", "api-gateway"),
        log_level=_env("LOG_LEVEL", "info"),
    )


def setup_logging(level: str = "info") -> None:
    """Configure the root logger for standalone use of the engine."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
