"""Operations that write materialized ConfigMaps, Secrets and workloads."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Optional

from ..errors import NotFoundError
from ..kube import TensegrityAPI
from ..resources.base import ResourceDefinition
from ..resources.secret import RECONCILER_ANNOTATION
from ..resources.tensegrity import TensegrityResource
from ..resources.workload import WorkloadConfig
from .materializer import ChildSlot

_LOG = logging.getLogger(__name__)


class ChildOperations:
    """Create, update and delete the child objects owned by a Tensegrity resource."""

    def __init__(self, api: TensegrityAPI) -> None:
        self.api = api

    def ensure_child(self, resource: TensegrityResource, slot: ChildSlot) -> Optional[Dict[str, Any]]:
        """Write the desired child, or delete the previously owned one when nothing is staged."""

        namespace = resource.namespace
        if slot.desired is not None:
            _LOG.info("Ensuring %s %s/%s", slot.kind, namespace, slot.desired.name)
            applied = self.api.apply(_owned(resource, slot.desired))
            if slot.previous_name and slot.previous_name != slot.desired.name:
                self._delete_owned(namespace, slot.kind, slot.previous_name, slot.reconciler)
            return applied
        if slot.previous_name:
            self._delete_owned(namespace, slot.kind, slot.previous_name, slot.reconciler)
        return None

    def ensure_workload(
        self,
        resource: TensegrityResource,
        config_map: Optional[Dict[str, Any]],
        secret: Optional[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        """Create or update the native workload wrapped by ``resource``."""

        workload = WorkloadConfig.for_resource(
            resource,
            config_map_name=_name_of(config_map),
            secret_name=_name_of(secret),
            config_map_version=_version_of(config_map),
            secret_version=_version_of(secret),
        )
        if workload is None:
            return None
        definition: ResourceDefinition = workload.to_resource()
        _LOG.info("Ensuring %s %s/%s", definition.kind, definition.namespace, definition.name)
        return self.api.apply(_owned(resource, definition))

    def _delete_owned(self, namespace: str, kind: str, name: str, reconciler: str) -> None:
        try:
            existing = self.api.get("v1", kind, name, namespace)
        except NotFoundError:
            return
        annotations = (existing.get("metadata") or {}).get("annotations") or {}
        if annotations.get(RECONCILER_ANNOTATION) != reconciler:
            _LOG.debug("Leaving %s %s/%s alone, it is not owned by %s", kind, namespace, name, reconciler)
            return
        self.api.delete("v1", kind, name, namespace)


def _name_of(body: Optional[Dict[str, Any]]) -> Optional[str]:
    if not body:
        return None
    return (body.get("metadata") or {}).get("name")


def _version_of(body: Optional[Dict[str, Any]]) -> Optional[str]:
    if not body:
        return None
    return (body.get("metadata") or {}).get("resourceVersion")


def _owned(resource: TensegrityResource, definition: ResourceDefinition) -> ResourceDefinition:
    owner = resource.owner_reference()
    if owner is None:
        return definition
    metadata = dict(definition.metadata)
    metadata["ownerReferences"] = [owner]
    return dataclasses.replace(definition, metadata=metadata)
