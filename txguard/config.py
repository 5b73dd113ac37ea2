# SPDX-License-Identifier: MIT
"""Pydantic configuration models for the idempotency tracker."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from txguard.idempotency.storage import StorageStrategy

__all__ = [
    "IdempotencyConfig",
    "RecoveryConfig",
    "StorageConfig",
    "load_config",
]


class StorageConfig(BaseModel):
    """Where request records live and how long terminal records are kept."""

    model_config = ConfigDict(extra="forbid")

    strategy: StorageStrategy = StorageStrategy.MEMORY
    key_prefix: str = Field(default="txguard_idempotency", min_length=1)
    ttl: int = Field(default=3_600_000, gt=0, description="TTL for terminal records in milliseconds")
    session_id: Optional[str] = None
    session_dir: Optional[Path] = None
    ephemeral_session: bool = True
    local_path: Path = Field(default=Path("data/idempotency.db"))


class RecoveryConfig(BaseModel):
    """Polling defaults used when resolving UNKNOWN requests."""

    model_config = ConfigDict(extra="forbid")

    timeout_ms: int = Field(default=60_000, gt=0)
    poll_interval_ms: int = Field(default=3_000, gt=0)

    @model_validator(mode="after")
    def _validate_interval(self) -> "RecoveryConfig":
        if self.poll_interval_ms > self.timeout_ms:
            msg = "poll_interval_ms must not exceed timeout_ms"
            raise ValueError(msg)
        return self


class IdempotencyConfig(BaseModel):
    """Top-level configuration for :class:`SubmissionOrchestrator`."""

    model_config = ConfigDict(extra="forbid")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    max_retries: int = Field(default=3, ge=0)
    metrics_enabled: bool = True

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "IdempotencyConfig":
        return cls.model_validate(dict(payload or {}))


def load_config(path: Path | str) -> IdempotencyConfig:
    """Load an :class:`IdempotencyConfig` from a YAML document."""

    with Path(path).open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    return IdempotencyConfig.from_mapping(data)
