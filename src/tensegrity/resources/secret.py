"""Secret builder for materialized sensitive keys."""
from __future__ import annotations

from typing import Dict

from pydantic import Field

from .base import ResourceDefinition, ResourceModel

RECONCILER_ANNOTATION = "reconciler"


class SecretConfig(ResourceModel):
    """Desired state of a Secret holding base64-encoded key values."""

    name: str
    namespace: str
    type: str = "Opaque"
    data: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    reconciler: str

    def to_resource(self) -> ResourceDefinition:
        metadata: Dict[str, object] = {
            "name": self.name,
            "namespace": self.namespace,
            "annotations": {RECONCILER_ANNOTATION: self.reconciler},
        }
        if self.labels:
            metadata["labels"] = dict(self.labels)

        return ResourceDefinition(
            api_version="v1",
            kind="Secret",
            metadata=metadata,
            spec=None,
            extra={"type": self.type, "data": dict(self.data)},
        )
