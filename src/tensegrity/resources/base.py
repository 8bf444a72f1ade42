"""Shared resource definitions for Tensegrity."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceModel(BaseModel):
    """Shared base model for Tensegrity API objects."""

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ObjectReference(ResourceModel):
    """Reference to a Kubernetes object, mirroring ``core/v1.ObjectReference``."""

    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    kind: Optional[str] = None
    name: Optional[str] = None
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    field_path: Optional[str] = Field(default=None, alias="fieldPath")

    def identity(self) -> tuple:
        return (
            self.api_version or "",
            self.kind or "",
            self.name or "",
            self.namespace or "",
            self.uid or "",
            self.resource_version or "",
            self.field_path or "",
        )


class ObjectKey(NamedTuple):
    """Identifies a single object in the cluster."""

    api_version: str
    kind: str
    namespace: str
    name: str

    @classmethod
    def from_object(cls, body: Dict[str, Any]) -> "ObjectKey":
        metadata = body.get("metadata") or {}
        return cls(
            api_version=body.get("apiVersion", ""),
            kind=body.get("kind", ""),
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name", ""),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class ResourceDefinition:
    """Represents a Kubernetes resource manifest."""

    api_version: str
    kind: str
    metadata: Dict[str, Any]
    spec: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata,
        }
        if self.spec is not None:
            body["spec"] = self.spec
        if self.extra:
            body.update(self.extra)
        return body

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}
