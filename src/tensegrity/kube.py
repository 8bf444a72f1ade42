"""Low-level Kubernetes client helpers for the Tensegrity controller."""
from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, Iterator, Optional

from kubernetes import config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient, ResourceInstance

from .config import ClusterContext, RetryPolicy
from .errors import NotFoundError
from .resources.base import ResourceDefinition
from .retry import retry_on_conflict
from .utils import deep_merge


_LOG = logging.getLogger(__name__)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value.to_dict() if isinstance(value, ResourceInstance) else value


def _not_found(exc: ApiException, kind: str, name: str, namespace: Optional[str]) -> NotFoundError:
    message = None
    try:
        message = json.loads(exc.body or "{}").get("message")
    except (TypeError, ValueError):
        pass
    return NotFoundError(kind, name, namespace, message=message)


class TensegrityAPI:
    """Wrapper around the Kubernetes dynamic client with Tensegrity-specific helpers."""

    def __init__(self, context: ClusterContext, retry: Optional[RetryPolicy] = None) -> None:
        self.context = context
        self.retry = retry or RetryPolicy()
        api_client = config.new_client_from_config(
            config_file=context.kubeconfig,
            context=context.context,
        )
        api_client.configuration.verify_ssl = context.verify_ssl
        self.api_client = api_client
        self.dynamic = DynamicClient(api_client)

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Return the object as a plain dict, raising :class:`NotFoundError` on 404."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        try:
            instance = resource.get(name=name, namespace=namespace if resource.namespaced else None)
        except ApiException as exc:
            if exc.status == 404:
                raise _not_found(exc, kind, name, namespace) from exc
            raise
        return _as_dict(instance)

    def apply(self, definition: ResourceDefinition) -> Dict[str, Any]:
        """Create or update a resource to match the provided definition."""

        body = definition.to_dict()
        namespace = definition.namespace
        resource = self.dynamic.resources.get(api_version=definition.api_version, kind=definition.kind)

        def write() -> Dict[str, Any]:
            try:
                existing = resource.get(name=definition.name, namespace=namespace)
            except ApiException as exc:
                if exc.status != 404:
                    raise
                _LOG.debug("Creating %s/%s", definition.kind, definition.name)
                return _as_dict(
                    resource.create(body=body, namespace=namespace, field_manager=self.context.field_manager)
                )

            existing_dict = _as_dict(existing)
            resource_version = existing_dict.get("metadata", {}).get("resourceVersion")
            merged_body = deep_merge(self._sanitize_existing(existing_dict), body)
            for key in ("data", "stringData", "spec"):
                if key in body:
                    merged_body[key] = copy.deepcopy(body[key])
            if resource_version:
                merged_body.setdefault("metadata", {})["resourceVersion"] = resource_version

            _LOG.debug("Updating %s/%s", definition.kind, definition.name)
            return _as_dict(
                resource.replace(
                    name=definition.name,
                    namespace=namespace,
                    body=merged_body,
                    field_manager=self.context.field_manager,
                )
            )

        return retry_on_conflict(write, self.retry)

    def delete(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> None:
        """Delete a resource if it exists."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        try:
            resource.delete(name=name, namespace=namespace)
            _LOG.info("Deleted %s/%s", kind, name)
        except ApiException as exc:
            if exc.status != 404:
                raise
            _LOG.debug("Resource %s/%s not found during delete", kind, name)

    def replace_status(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Write ``body['status']`` through the status subresource.

        The first attempt carries the resourceVersion of ``body``; conflicts
        re-read the object and re-apply the same status.
        """

        api_version = body["apiVersion"]
        kind = body["kind"]
        metadata = body.get("metadata", {})
        name = metadata["name"]
        namespace = metadata.get("namespace")
        status = copy.deepcopy(body.get("status") or {})
        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        pending: Optional[Dict[str, Any]] = body

        def write() -> Dict[str, Any]:
            nonlocal pending
            if pending is None:
                target = _as_dict(resource.get(name=name, namespace=namespace))
            else:
                target = pending
                pending = None
            target = copy.deepcopy(target)
            target["status"] = status
            return _as_dict(
                resource.status.replace(body=target, namespace=namespace, field_manager=self.context.field_manager)
            )

        return retry_on_conflict(write, self.retry)

    def watch(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield ``{"type": ..., "object": {...}}`` watch events as plain dicts."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        for event in self.dynamic.watch(resource, namespace=namespace, timeout=timeout):
            raw = event.get("raw_object") or _as_dict(event.get("object"))
            yield {"type": event.get("type"), "object": raw}

    @staticmethod
    def _sanitize_existing(body: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = copy.deepcopy(body)
        metadata = sanitized.get("metadata", {})
        for field in [
            "creationTimestamp",
            "managedFields",
            "resourceVersion",
            "selfLink",
            "uid",
            "generation",
        ]:
            metadata.pop(field, None)
        sanitized.pop("status", None)
        return sanitized
