# packstate/config/settings.py
from __future__ import annotations
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .store import ConfigStore

__all__ = [
    "ExternalDestinationSettings",
    "RetrySettings",
    "OperationSettings",
    "StorageSettings",
    "SummarySettings",
    "EngineSettings",
]



class ExternalDestinationSettings(BaseModel):
    """A user-configured additional root packages may live in."""
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: str
    path: str
    description: str = ""
    enabled: bool = True
    sortOrder: int = 0
    showInMainTable: bool = True
    statusColor: str = "#808080"



class RetrySettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    maxAttempts: int = Field(default=5, ge=1)
    backoffStepMs: int = Field(default=50, ge=0)



class OperationSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    throttleWindowMs: int = Field(default=1000, ge=0)
    yieldEvery: int = Field(default=10, ge=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)



class StorageSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    baseDir: str = "."
    loadedRoot: str = "AddonPackages"
    availableRoot: str = "AllPackages"
    archiveRoot: str | None = "ArchivedPackages"
    externalDestinations: list[ExternalDestinationSettings] = Field(default_factory=list)



class SummarySettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    maxListedErrors: int = Field(default=10, ge=0)



class EngineSettings(BaseModel):
    """Typed view over the merged global configuration."""
    model_config = ConfigDict(extra="ignore")

    storage: StorageSettings = Field(default_factory=StorageSettings)
    operations: OperationSettings = Field(default_factory=OperationSettings)
    summaries: SummarySettings = Field(default_factory=SummarySettings)

    @classmethod
    def fromValues(cls, values: dict[str, Any]) -> "EngineSettings":
        return cls.model_validate(values)

    @classmethod
    def fromStore(cls, store: ConfigStore) -> "EngineSettings":
        return cls.fromValues(store.snapshot()["values"])
