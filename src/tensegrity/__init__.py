"""Tensegrity key-resolution engine."""

from .config import ClusterContext, ControllerConfig, EngineOptions  # noqa: F401
from .kube import TensegrityAPI  # noqa: F401

__all__ = ["ClusterContext", "ControllerConfig", "EngineOptions", "TensegrityAPI"]
