"""Tensegrity spec and status models shared by every workload kind."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import Field

from .. import fieldpath
from ..errors import FieldError, FieldPathParseError
from .base import ObjectKey, ObjectReference, ResourceModel
from .conditions import Condition

SUCCESS = "Success"
FAILURE = "Failure"

NAMESPACE_DELEGATE = "Namespace"

DEFAULT_PRODUCES_CONFIG_MAP_SUFFIX = "-produced"
DEFAULT_PRODUCES_SECRET_SUFFIX = "-produced"
DEFAULT_CONSUMES_CONFIG_MAP_SUFFIX = "-consumed"
DEFAULT_CONSUMES_SECRET_SUFFIX = "-consumed"


class ProduceSpec(ObjectReference):
    """A key the resource publishes, extracted from ``fieldPath`` of the referenced object."""

    key: str = ""
    sensitive: bool = False
    encoded: bool = False

    @property
    def is_static(self) -> bool:
        return not self.kind and not self.api_version


class ConsumeSpec(ObjectReference):
    """A producer resource to consume from, with an env name to producer key mapping."""

    maps: Dict[str, str] = Field(default_factory=dict)

    def reference(self) -> ObjectReference:
        return ObjectReference.model_validate(self.model_dump(exclude={"maps"}))


class ProducedKeyStatus(ObjectReference):
    status: str
    reason: Optional[str] = None
    key: str
    sensitive: bool = False
    encoded: bool = False
    value: Optional[str] = None


class ConsumedKeyStatus(ObjectReference):
    delegate: Optional[ObjectReference] = None
    status: str
    reason: Optional[str] = None
    key: str
    env: str


class TensegritySpec(ResourceModel):
    """Delegates, produced keys and consumed keys of a resource."""

    delegates: List[ObjectReference] = Field(default_factory=list)
    consumes: List[ConsumeSpec] = Field(default_factory=list)
    consumes_config_map_name: str = Field(default="", alias="consumesConfigMapName")
    consumes_secret_name: str = Field(default="", alias="consumesSecretName")
    produces: List[ProduceSpec] = Field(default_factory=list)
    produces_config_map_name: str = Field(default="", alias="producesConfigMapName")
    produces_secret_name: str = Field(default="", alias="producesSecretName")

    def apply_defaults(self, name: str, namespace: str) -> bool:
        """Fill in derived names the way the admission webhook does.

        Returns ``True`` when anything changed.
        """

        changed = False
        for produce in self.produces:
            if not produce.name:
                produce.name = name
                changed = True
        if not self.delegates and namespace:
            self.delegates = [ObjectReference(kind=NAMESPACE_DELEGATE, name=namespace)]
            changed = True
        defaults = {
            "consumes_config_map_name": name + DEFAULT_CONSUMES_CONFIG_MAP_SUFFIX,
            "consumes_secret_name": name + DEFAULT_CONSUMES_SECRET_SUFFIX,
            "produces_config_map_name": name + DEFAULT_PRODUCES_CONFIG_MAP_SUFFIX,
            "produces_secret_name": name + DEFAULT_PRODUCES_SECRET_SUFFIX,
        }
        for attribute, value in defaults.items():
            if not getattr(self, attribute):
                setattr(self, attribute, value)
                changed = True
        return changed

    def validate_spec(self) -> List[FieldError]:
        """Return every invariant violation found in the spec."""

        return self._validate_produces() + self._validate_consumes() + self._validate_delegates()

    def _validate_produces(self) -> List[FieldError]:
        errors: List[FieldError] = []
        seen_keys = set()
        for index, produce in enumerate(self.produces):
            path = f"spec.produces[{index}]"
            if not produce.key:
                errors.append(FieldError(f"{path}.key", "Required value", "valid key name"))
            elif produce.key in seen_keys:
                errors.append(FieldError(f"{path}.key", "Duplicate value", produce.key))
            seen_keys.add(produce.key)
            if not produce.is_static:
                if not produce.api_version:
                    errors.append(FieldError(f"{path}.apiVersion", "Required value", "valid resource api version"))
                if not produce.kind:
                    errors.append(FieldError(f"{path}.kind", "Required value", "valid resource kind"))
                if not produce.name:
                    errors.append(FieldError(f"{path}.name", "Required value", "valid resource name"))
            if produce.encoded and not produce.sensitive:
                errors.append(
                    FieldError(f"{path}.encoded", "Invalid value", "encoded field is allowed only when key is sensitive")
                )
            if not produce.field_path:
                errors.append(FieldError(f"{path}.fieldPath", "Required value", "valid resource JSONPath"))
                continue
            try:
                fieldpath.parse(produce.field_path)
            except FieldPathParseError as exc:
                errors.append(FieldError(f"{path}.fieldPath", "Invalid value", f"{produce.field_path!r}: {exc.detail}"))
        return errors

    def _validate_consumes(self) -> List[FieldError]:
        errors: List[FieldError] = []
        seen_refs = set()
        seen_envs = set()
        for index, consume in enumerate(self.consumes):
            path = f"spec.consumes[{index}]"
            if not consume.api_version:
                errors.append(FieldError(f"{path}.apiVersion", "Required value", "valid resource api version"))
            if not consume.kind:
                errors.append(FieldError(f"{path}.kind", "Required value", "valid resource kind"))
            if not consume.name:
                errors.append(FieldError(f"{path}.name", "Required value", "valid resource name"))
            if not consume.maps:
                errors.append(
                    FieldError(f"{path}.maps", "Required value", "valid environment variables to keys mapping")
                )
            identity = consume.reference().identity()
            if identity in seen_refs:
                errors.append(FieldError(path, "Duplicate value", f"{consume.kind}/{consume.name}"))
            seen_refs.add(identity)
            for env in consume.maps:
                if env in seen_envs:
                    errors.append(FieldError(f"{path}.maps", "Duplicate value", env))
                seen_envs.add(env)
        return errors

    def _validate_delegates(self) -> List[FieldError]:
        errors: List[FieldError] = []
        seen = set()
        for index, delegate in enumerate(self.delegates):
            path = f"spec.delegates[{index}]"
            if not delegate.kind:
                errors.append(FieldError(f"{path}.kind", "Required value", "valid resource kind"))
            elif delegate.kind != NAMESPACE_DELEGATE:
                errors.append(
                    FieldError(f"{path}.kind", "Invalid value", f"{delegate.kind}: kind must be one of: Namespace")
                )
            if not delegate.name:
                errors.append(FieldError(f"{path}.name", "Required value", "valid resource name"))
            if delegate.identity() in seen:
                errors.append(FieldError(path, "Duplicate value", f"{delegate.kind}/{delegate.name}"))
            seen.add(delegate.identity())
        return errors


class TensegrityStatus(ResourceModel):
    """Engine output; rewritten on every reconciliation."""

    consumed: Optional[bool] = None
    consumed_keys: List[ConsumedKeyStatus] = Field(default_factory=list, alias="consumedKeys")
    consumed_config_map_name: str = Field(default="", alias="consumedConfigMapName")
    consumed_secret_name: str = Field(default="", alias="consumedSecretName")
    produced: Optional[bool] = None
    produced_keys: List[ProducedKeyStatus] = Field(default_factory=list, alias="producedKeys")
    produced_config_map_name: str = Field(default="", alias="producedConfigMapName")
    produced_secret_name: str = Field(default="", alias="producedSecretName")
    conditions: List[Condition] = Field(default_factory=list)
    observed_generation: Optional[int] = Field(default=None, alias="observedGeneration")

    def to_dict(self) -> Dict[str, Any]:
        body = self.model_dump(by_alias=True, exclude_none=True)
        return {key: value for key, value in body.items() if value not in ("", [])}


@runtime_checkable
class HasTensegritySpec(Protocol):
    """Anything the engines can reconcile."""

    @property
    def name(self) -> str: ...

    @property
    def namespace(self) -> str: ...

    @property
    def labels(self) -> Dict[str, str]: ...

    @property
    def tensegrity_spec(self) -> TensegritySpec: ...

    @property
    def tensegrity_status(self) -> TensegrityStatus: ...


_SPEC_FIELDS = {info.alias or name for name, info in TensegritySpec.model_fields.items()}


class TensegrityResource(ResourceModel):
    """A concrete Tensegrity custom resource of any supported kind.

    ``workload`` holds the part of ``spec`` that belongs to the wrapped
    workload (for example a ``DeploymentSpec``).
    """

    api_version: str = Field(alias="apiVersion")
    kind: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: TensegritySpec = Field(default_factory=TensegritySpec)
    workload: Dict[str, Any] = Field(default_factory=dict)
    status: TensegrityStatus = Field(default_factory=TensegrityStatus)

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "TensegrityResource":
        spec = dict(body.get("spec") or {})
        workload = {key: value for key, value in spec.items() if key not in _SPEC_FIELDS}
        return cls(
            api_version=body.get("apiVersion", ""),
            kind=body.get("kind", ""),
            metadata=dict(body.get("metadata") or {}),
            spec=TensegritySpec.model_validate(spec),
            workload=workload,
            status=TensegrityStatus.model_validate(body.get("status") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        spec = dict(self.workload)
        spec.update(self.spec.model_dump(by_alias=True, exclude_none=True))
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata,
            "spec": spec,
            "status": self.status.to_dict(),
        }

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self.metadata.get("labels") or {})

    @property
    def generation(self) -> Optional[int]:
        return self.metadata.get("generation")

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.api_version, self.kind, self.namespace, self.name)

    def owner_reference(self) -> Optional[Dict[str, Any]]:
        """Controller owner reference for children, or ``None`` before the object has a uid."""

        if not self.uid:
            return None
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    @property
    def tensegrity_spec(self) -> TensegritySpec:
        return self.spec

    @property
    def tensegrity_status(self) -> TensegrityStatus:
        return self.status


@dataclass(frozen=True)
class TensegrityKind:
    """A custom resource kind that embeds a :class:`TensegritySpec`."""

    api_version: str
    kind: str
    workload_api_version: Optional[str] = None

    @property
    def group(self) -> str:
        return self.api_version.split("/", 1)[0]


TENSEGRITY_KINDS: List[TensegrityKind] = [
    TensegrityKind("k8s.tensegrity.fastforge.io/v1alpha1", "Deployment", "apps/v1"),
    TensegrityKind("k8s.tensegrity.fastforge.io/v1alpha1", "StatefulSet", "apps/v1"),
    TensegrityKind("k8s.tensegrity.fastforge.io/v1alpha1", "DaemonSet", "apps/v1"),
    TensegrityKind("argo.tensegrity.fastforge.io/v1alpha1", "Rollout", "argoproj.io/v1alpha1"),
    TensegrityKind("tensegrity.fastforge.io/v1alpha1", "Static"),
]


def find_kind(api_version: str, kind: str) -> Optional[TensegrityKind]:
    for candidate in TENSEGRITY_KINDS:
        if candidate.api_version == api_version and candidate.kind == kind:
            return candidate
    return None
