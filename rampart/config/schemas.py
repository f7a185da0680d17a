"""
Configuration Schemas for Rampart.

Pydantic model for process-wide settings. Values come from environment
variables with the ``RAMPART_`` prefix (see ``rampart.app.dependencies``).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from rampart.schemas import DEFAULT_PROTECTED_ENVIRONMENTS


class AppSettings(BaseModel):
    """
    Application settings model.

    Used for type-safe settings access.
    """

    # Service identity
    service_name: str = "rampart"
    environment: str = "dev"
    debug: bool = False

    # Profiles
    profiles_dir: Path | None = Field(default=None, description="Directory of framework profiles")

    # Governance
    protected_environments: frozenset[str] = Field(
        default=DEFAULT_PROTECTED_ENVIRONMENTS,
        description="Environments where policy overrides are never applied",
    )
    strict_policy: bool = Field(
        default=False,
        description="Fail instead of warn on policy overrides in protected environments",
    )

    # Patching
    patch_file: str = Field(default="patches.py", description="Patch hook file name beside the manifest")

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "RAMPART_"
        case_sensitive = False

    @field_validator("protected_environments", mode="before")
    @classmethod
    def _split_environments(cls, value):
        if isinstance(value, str):
            return frozenset(part.strip() for part in value.split(",") if part.strip())
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()
