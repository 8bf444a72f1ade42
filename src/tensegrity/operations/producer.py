"""Produce keys from referenced cluster objects."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .. import fieldpath
from ..errors import ExtractionError, NotFoundError, TensegrityError
from ..resources.conditions import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    KEYS_NOT_PRODUCED_MESSAGE,
    KEYS_NOT_PRODUCED_REASON,
    KEYS_PRODUCED_MESSAGE,
    KEYS_PRODUCED_REASON,
    PRODUCED,
    new_condition,
    remove_condition,
    set_condition,
)
from ..resources.tensegrity import FAILURE, SUCCESS, HasTensegritySpec, ProducedKeyStatus, ProduceSpec
from ..utils import b64encode
from .context import SyncContext
from .materializer import ValueMaterializer

_LOG = logging.getLogger(__name__)


class ProducerEngine:
    """Recompute the keys a resource produces and stage them for materialization.

    Publication is all-or-nothing: a single failing key clears both the
    plaintext and the sensitive output for the cycle.
    """

    name = "ProducerReconciler"

    def __init__(self, materializer: Optional[ValueMaterializer] = None) -> None:
        self.materializer = materializer or ValueMaterializer()

    def sync(self, resource: HasTensegritySpec, context: SyncContext) -> None:
        spec = resource.tensegrity_spec
        status = resource.tensegrity_status
        status.produced = None
        status.produced_keys = []

        if not spec.produces:
            remove_condition(status, PRODUCED)
            self.materializer.clear(context.producer_config_map, context.producer_secret)
            status.produced_config_map_name = ""
            status.produced_secret_name = ""
            return

        keys: Dict[str, str] = {}
        sensitive_keys: Dict[str, str] = {}
        seen_error = False
        for produce in spec.produces:
            obj: Optional[Dict[str, Any]] = None
            value = ""
            error: Optional[TensegrityError] = None
            try:
                obj = self._get_object(resource, produce, context)
                value = fieldpath.extract(obj, produce.field_path or "")
            except (NotFoundError, ExtractionError) as exc:
                error = exc
                seen_error = True
                _LOG.info("Key %s of %s/%s is not produced: %s", produce.key, resource.namespace, resource.name, exc)
            else:
                if produce.sensitive and produce.encoded:
                    sensitive_keys[produce.key] = value
                elif produce.sensitive:
                    sensitive_keys[produce.key] = b64encode(value)
                else:
                    keys[produce.key] = value
            status.produced_keys.append(self._key_status(resource, produce, obj, value, error))

        self._update_status(resource, context)

        if seen_error:
            keys, sensitive_keys = {}, {}
        status.produced_config_map_name, status.produced_secret_name = self.materializer.stage(
            context.producer_config_map,
            context.producer_secret,
            spec.produces_config_map_name,
            spec.produces_secret_name,
            keys,
            sensitive_keys,
        )

    def _get_object(self, resource: HasTensegritySpec, produce: ProduceSpec, context: SyncContext) -> Dict[str, Any]:
        if produce.is_static:
            return {}
        return context.tracked_get(produce.api_version or "", produce.kind or "", produce.name or "", resource.namespace)

    def _key_status(
        self,
        resource: HasTensegritySpec,
        produce: ProduceSpec,
        obj: Optional[Dict[str, Any]],
        value: str,
        error: Optional[TensegrityError],
    ) -> ProducedKeyStatus:
        key_status = ProducedKeyStatus(
            status=SUCCESS,
            key=produce.key,
            sensitive=produce.sensitive,
            encoded=produce.encoded,
            field_path=produce.field_path,
        )
        if obj:
            metadata = obj.get("metadata") or {}
            key_status.api_version = obj.get("apiVersion")
            key_status.kind = obj.get("kind")
            key_status.name = metadata.get("name")
            key_status.namespace = metadata.get("namespace")
            key_status.uid = metadata.get("uid")
            key_status.resource_version = metadata.get("resourceVersion")
        elif not produce.is_static:
            key_status.api_version = produce.api_version
            key_status.kind = produce.kind
            key_status.name = produce.name
            key_status.namespace = resource.namespace

        if value and not produce.sensitive:
            key_status.value = value
        if error is not None:
            key_status.status = FAILURE
            key_status.reason = str(error)
        return key_status

    def _update_status(self, resource: HasTensegritySpec, context: SyncContext) -> None:
        status = resource.tensegrity_status
        failed_keys = [key.key for key in status.produced_keys if key.status == FAILURE]
        if failed_keys:
            status.produced = False
            condition = new_condition(
                PRODUCED,
                CONDITION_FALSE,
                KEYS_NOT_PRODUCED_REASON,
                KEYS_NOT_PRODUCED_MESSAGE.format(", ".join(failed_keys)),
                context.clock,
            )
        else:
            status.produced = True
            condition = new_condition(
                PRODUCED, CONDITION_TRUE, KEYS_PRODUCED_REASON, KEYS_PRODUCED_MESSAGE, context.clock
            )
        set_condition(status, condition)
