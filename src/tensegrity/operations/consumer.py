"""Consume keys published by other resources through the delegate search path."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .. import fieldpath
from ..config import ConsumeSource
from ..errors import ExtractionError, MissingDelegatesError, NotFoundError, UnsupportedDelegateKindError
from ..resources.base import ObjectReference
from ..resources.conditions import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONSUMED,
    KEYS_CONSUMED_MESSAGE,
    KEYS_CONSUMED_REASON,
    KEYS_NOT_CONSUMED_MESSAGE,
    KEYS_NOT_CONSUMED_REASON,
    new_condition,
    remove_condition,
    set_condition,
)
from ..resources.tensegrity import (
    FAILURE,
    NAMESPACE_DELEGATE,
    SUCCESS,
    ConsumedKeyStatus,
    ConsumeSpec,
    HasTensegritySpec,
    ProducedKeyStatus,
    TensegrityResource,
)
from ..utils import b64encode
from .context import SyncContext
from .materializer import ValueMaterializer

_LOG = logging.getLogger(__name__)

NOT_FOUND_REASON = "consumed key by reference is not found"


@dataclass
class Resolution:
    """Values of one consume entry resolved from a single delegate."""

    delegate: ObjectReference
    keys: Dict[str, str] = field(default_factory=dict)
    sensitive_keys: Dict[str, str] = field(default_factory=dict)


class ConsumerEngine:
    """Resolve consumed keys from producer resources found in delegate namespaces.

    Delegates are a priority list: for each consume entry the first delegate
    whose producer satisfies every mapped key wins, and no values are merged
    across delegates.
    """

    name = "ConsumerReconciler"

    def __init__(self, materializer: Optional[ValueMaterializer] = None) -> None:
        self.materializer = materializer or ValueMaterializer()

    def sync(self, resource: HasTensegritySpec, context: SyncContext) -> None:
        spec = resource.tensegrity_spec
        status = resource.tensegrity_status
        status.consumed = None
        status.consumed_keys = []

        if not spec.consumes:
            remove_condition(status, CONSUMED)
            self.materializer.clear(context.consumer_config_map, context.consumer_secret)
            status.consumed_config_map_name = ""
            status.consumed_secret_name = ""
            return

        if not spec.delegates and context.options.strict_delegates:
            raise MissingDelegatesError()
        for delegate in spec.delegates:
            if delegate.kind != NAMESPACE_DELEGATE:
                raise UnsupportedDelegateKindError(delegate.kind or "")

        keys: Dict[str, str] = {}
        sensitive_keys: Dict[str, str] = {}
        for consume in spec.consumes:
            resolution = self._resolve(resource, consume, context)
            if resolution is None:
                _LOG.info(
                    "%s/%s cannot consume %s/%s from any delegate",
                    resource.namespace,
                    resource.name,
                    consume.kind,
                    consume.name,
                )
                self._record(resource, consume, None)
                continue
            keys.update(resolution.keys)
            sensitive_keys.update(resolution.sensitive_keys)
            self._record(resource, consume, resolution.delegate)

        self._update_status(resource, context)
        status.consumed_config_map_name, status.consumed_secret_name = self.materializer.stage(
            context.consumer_config_map,
            context.consumer_secret,
            spec.consumes_config_map_name,
            spec.consumes_secret_name,
            keys,
            sensitive_keys,
        )

    def _resolve(
        self, resource: HasTensegritySpec, consume: ConsumeSpec, context: SyncContext
    ) -> Optional[Resolution]:
        envs_by_key: Dict[str, List[str]] = {}
        for env, key in consume.maps.items():
            envs_by_key.setdefault(key, []).append(env)

        for delegate in resource.tensegrity_spec.delegates:
            producer = self._find_producer(delegate, consume, context)
            if producer is None:
                continue
            if context.options.consume_source == ConsumeSource.OBJECTS:
                resolution = self._resolve_from_objects(producer, delegate, envs_by_key, context)
            else:
                resolution = self._resolve_from_status(producer, delegate, envs_by_key, context)
            if resolution is not None:
                _LOG.debug("Consumed %s/%s from delegate %s", consume.kind, consume.name, delegate.name)
                return resolution
        return None

    def _find_producer(
        self, delegate: ObjectReference, consume: ConsumeSpec, context: SyncContext
    ) -> Optional[TensegrityResource]:
        try:
            context.tracked_get("v1", NAMESPACE_DELEGATE, delegate.name or "")
            body = context.tracked_get(
                consume.api_version or "", consume.kind or "", consume.name or "", delegate.name
            )
        except NotFoundError as exc:
            _LOG.debug("Delegate %s skipped: %s", delegate.name, exc)
            return None
        return TensegrityResource.from_dict(body)

    def _resolve_from_status(
        self,
        producer: TensegrityResource,
        delegate: ObjectReference,
        envs_by_key: Dict[str, List[str]],
        context: SyncContext,
    ) -> Optional[Resolution]:
        pending = dict(envs_by_key)
        resolution = Resolution(delegate=delegate)
        for produced in producer.status.produced_keys:
            envs = pending.get(produced.key)
            if not envs or produced.status != SUCCESS:
                continue
            if produced.sensitive:
                value = self._sensitive_value(produced, context)
                if value is None:
                    continue
                for env in envs:
                    resolution.sensitive_keys[env] = value
            else:
                if produced.value is None:
                    continue
                for env in envs:
                    resolution.keys[env] = produced.value
            del pending[produced.key]
            if not pending:
                break
        if pending:
            return None
        return resolution

    def _sensitive_value(self, produced: ProducedKeyStatus, context: SyncContext) -> Optional[str]:
        try:
            obj = {}
            if produced.kind or produced.api_version:
                obj = context.tracked_get(
                    produced.api_version or "", produced.kind or "", produced.name or "", produced.namespace
                )
            value = fieldpath.extract(obj, produced.field_path or "")
        except (NotFoundError, ExtractionError) as exc:
            _LOG.debug("Sensitive key %s cannot be re-read: %s", produced.key, exc)
            return None
        return value if produced.encoded else b64encode(value)

    def _resolve_from_objects(
        self,
        producer: TensegrityResource,
        delegate: ObjectReference,
        envs_by_key: Dict[str, List[str]],
        context: SyncContext,
    ) -> Optional[Resolution]:
        namespace = delegate.name
        config_map_data: Dict[str, str] = {}
        secret_data: Dict[str, str] = {}
        try:
            if producer.status.produced_config_map_name:
                config_map = context.tracked_get(
                    "v1", "ConfigMap", producer.status.produced_config_map_name, namespace
                )
                config_map_data = config_map.get("data") or {}
            if producer.status.produced_secret_name:
                secret = context.tracked_get("v1", "Secret", producer.status.produced_secret_name, namespace)
                secret_data = secret.get("data") or {}
        except NotFoundError as exc:
            _LOG.debug("Materialized keys of %s are missing: %s", producer.name, exc)
            return None

        resolution = Resolution(delegate=delegate)
        for key, envs in envs_by_key.items():
            if key in config_map_data:
                for env in envs:
                    resolution.keys[env] = config_map_data[key]
            elif key in secret_data:
                for env in envs:
                    resolution.sensitive_keys[env] = secret_data[key]
            else:
                return None
        return resolution

    def _record(
        self, resource: HasTensegritySpec, consume: ConsumeSpec, delegate: Optional[ObjectReference]
    ) -> None:
        reference = consume.reference()
        for env, key in consume.maps.items():
            key_status = ConsumedKeyStatus(
                **reference.model_dump(),
                delegate=delegate,
                status=SUCCESS,
                key=key,
                env=env,
            )
            if delegate is None:
                key_status.status = FAILURE
                key_status.reason = NOT_FOUND_REASON
            resource.tensegrity_status.consumed_keys.append(key_status)

    def _update_status(self, resource: HasTensegritySpec, context: SyncContext) -> None:
        status = resource.tensegrity_status
        failed_envs = [key.env for key in status.consumed_keys if key.status == FAILURE]
        if failed_envs:
            status.consumed = False
            condition = new_condition(
                CONSUMED,
                CONDITION_FALSE,
                KEYS_NOT_CONSUMED_REASON,
                KEYS_NOT_CONSUMED_MESSAGE.format(", ".join(failed_envs)),
                context.clock,
            )
        else:
            status.consumed = True
            condition = new_condition(
                CONSUMED, CONDITION_TRUE, KEYS_CONSUMED_REASON, KEYS_CONSUMED_MESSAGE, context.clock
            )
        set_condition(status, condition)
