"""Configuration models and helpers for the Tensegrity controller."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


class ClusterContext(BaseModel):
    """Connection context to interact with a Kubernetes cluster."""

    namespace: Optional[str] = None
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    verify_ssl: bool = True
    field_manager: str = Field(default="tensegrity-controller")


class ConsumeSource(str, Enum):
    """Where consumed keys are read from on the producer side."""

    STATUS = "status"
    OBJECTS = "objects"


class EngineOptions(BaseModel):
    """Behavioural switches of the producer and consumer engines."""

    strict_delegates: bool = True
    consume_source: ConsumeSource = ConsumeSource.STATUS


class RetryPolicy(BaseModel):
    """Backoff applied to conflicting writes and failed reconciliations."""

    attempts: int = 5
    backoff_base: float = 0.01
    backoff_max: float = 300.0
    jitter: float = 0.1


class WatchKind(BaseModel):
    api_version: str = Field(alias="apiVersion")
    kind: str

    model_config = {"populate_by_name": True}


class ControllerConfig(BaseModel):
    """Top-level controller configuration."""

    cluster: ClusterContext = Field(default_factory=ClusterContext)
    engine: EngineOptions = Field(default_factory=EngineOptions)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    workers: int = 4
    watch_kinds: List[WatchKind] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: str | Path) -> "ControllerConfig":
        document_path = Path(path)
        data = yaml.safe_load(document_path.read_text())
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("Configuration file must contain a mapping at the top level.")
        return cls.model_validate(data)
