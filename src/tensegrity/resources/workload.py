"""Native workload builder for Tensegrity workload kinds."""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from .base import ResourceDefinition, ResourceModel
from .secret import RECONCILER_ANNOTATION
from .tensegrity import TensegrityResource, find_kind

CONSUMER_SECRET_VERSION_ANNOTATION = "tensegrity.fastforge.io/consumerSecretVersion"
CONSUMER_CONFIG_MAP_VERSION_ANNOTATION = "tensegrity.fastforge.io/consumerConfigMapVersion"


class WorkloadConfig(ResourceModel):
    """Desired native workload with consumed keys wired in as ``envFrom`` sources."""

    api_version: str
    kind: str
    name: str
    namespace: str
    labels: Dict[str, str]
    spec: Dict[str, Any]
    config_map_name: Optional[str] = None
    secret_name: Optional[str] = None
    config_map_version: Optional[str] = None
    secret_version: Optional[str] = None
    reconciler: str

    @classmethod
    def for_resource(
        cls,
        resource: TensegrityResource,
        config_map_name: Optional[str] = None,
        secret_name: Optional[str] = None,
        config_map_version: Optional[str] = None,
        secret_version: Optional[str] = None,
    ) -> Optional["WorkloadConfig"]:
        """Return the workload for ``resource`` or ``None`` when its kind wraps no workload."""

        kind = find_kind(resource.api_version, resource.kind)
        if kind is None or kind.workload_api_version is None:
            return None
        return cls(
            api_version=kind.workload_api_version,
            kind=kind.kind,
            name=resource.name,
            namespace=resource.namespace,
            labels=resource.labels,
            spec=resource.workload,
            config_map_name=config_map_name,
            secret_name=secret_name,
            config_map_version=config_map_version,
            secret_version=secret_version,
            reconciler=f"{kind.kind}ChildReconciler",
        )

    def env_from(self) -> List[Dict[str, Any]]:
        sources: List[Dict[str, Any]] = []
        if self.secret_name:
            sources.append({"secretRef": {"name": self.secret_name}})
        if self.config_map_name:
            sources.append({"configMapRef": {"name": self.config_map_name}})
        return sources

    def to_resource(self) -> ResourceDefinition:
        spec = copy.deepcopy(self.spec)
        sources = self.env_from()
        template = spec.setdefault("template", {})
        pod_spec = template.setdefault("spec", {})
        if sources:
            for field in ("initContainers", "containers"):
                for container in pod_spec.get(field) or []:
                    existing = container.get("envFrom") or []
                    container["envFrom"] = existing + [item for item in sources if item not in existing]

        versions = {}
        if self.secret_version:
            versions[CONSUMER_SECRET_VERSION_ANNOTATION] = self.secret_version
        if self.config_map_version:
            versions[CONSUMER_CONFIG_MAP_VERSION_ANNOTATION] = self.config_map_version
        if versions:
            template_metadata = template.setdefault("metadata", {})
            template_metadata["annotations"] = {**(template_metadata.get("annotations") or {}), **versions}

        metadata: Dict[str, object] = {
            "name": self.name,
            "namespace": self.namespace,
            "annotations": {RECONCILER_ANNOTATION: self.reconciler},
        }
        if self.labels:
            metadata["labels"] = dict(self.labels)

        return ResourceDefinition(
            api_version=self.api_version,
            kind=self.kind,
            metadata=metadata,
            spec=spec,
        )
