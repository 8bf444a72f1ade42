"""ConfigMap builder for materialized plaintext keys."""
from __future__ import annotations

from typing import Dict

from pydantic import Field

from .base import ResourceDefinition, ResourceModel
from .secret import RECONCILER_ANNOTATION


class ConfigMapConfig(ResourceModel):
    """Desired state of a ConfigMap holding plaintext key values."""

    name: str
    namespace: str
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
            kind="ConfigMap",
            metadata=metadata,
            spec=None,
            extra={"data": dict(self.data)},
        )
