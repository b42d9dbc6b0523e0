"""
DocVault Configuration — Load and validate docvault.yaml at startup.

Usage:
    from docvault.engine.config import load_config, get_config
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, field_validator

CONFIG_FILE_NAME = "docvault.yaml"

EXPIRY_CHOICES = ("never", "1d", "7d", "30d")


# ---------------------------------------------------------------------------
# Pydantic models for docvault.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///docvault.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    echo: bool = False


class SearchConfig(BaseModel):
    default_page_size: int = 20
    max_page_size: int = 100
    facet_tag_limit: int = 20
    facet_creator_limit: int = 10
    suggestion_limit: int = 10
    # Whether documents merely granted to the requester appear in default
    # (visibility-unspecified) searches.
    include_granted_in_default_scope: bool = False

    @field_validator("max_page_size")
    @classmethod
    def validate_max_page_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_page_size must be >= 1, got {v}")
        return v


class SharingConfig(BaseModel):
    token_bytes: int = 32
    default_expiry: str = "7d"
    password_rounds: int = 12

    @field_validator("default_expiry")
    @classmethod
    def validate_default_expiry(cls, v: str) -> str:
        if v not in EXPIRY_CHOICES:
            raise ValueError(f"default_expiry must be one of {EXPIRY_CHOICES}, got '{v}'")
        return v

    @field_validator("token_bytes")
    @classmethod
    def validate_token_bytes(cls, v: int) -> int:
        if v < 16:
            raise ValueError(f"token_bytes must be at least 16, got {v}")
        return v


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".docvault/logs"
    events_enabled: bool = True
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class DocVaultConfig(BaseModel):
    """Root model for docvault.yaml."""
    name: str = "DocVault"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    search: SearchConfig = SearchConfig()
    sharing: SharingConfig = SharingConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[DocVaultConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for docvault.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILE_NAME).exists():
            return parent
    return current


def load_config(config_path: Optional[str] = None) -> DocVaultConfig:
    """
    Load and validate docvault.yaml.

    Args:
        config_path: Explicit path to docvault.yaml. If None, auto-discovers.

    Returns:
        Validated DocVaultConfig instance (defaults if the file is missing).
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILE_NAME)

    path = Path(config_path)
    if not path.exists():
        _config = DocVaultConfig()
        return _config

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    # The file may wrap everything under a top-level "docvault:" key
    data = raw.get("docvault", raw)

    _config = DocVaultConfig(**data)
    return _config


def get_config() -> DocVaultConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[DocVaultConfig]) -> None:
    """Replace the loaded config (used by tests and embedding applications)."""
    global _config
    _config = config
