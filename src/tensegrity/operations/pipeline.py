"""Run the consumer, producer and materializer stages for one resource."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from ..config import EngineOptions
from ..errors import NotFoundError, SpecValidationError
from ..kube import TensegrityAPI
from ..resources.base import ObjectKey
from ..resources.conditions import Clock, utc_now
from ..resources.tensegrity import HasTensegritySpec, TensegrityResource
from ..tracker import Tracker
from .children import ChildOperations
from .consumer import ConsumerEngine
from .context import ObjectStore, SyncContext
from .materializer import (
    CONSUMER_CONFIG_MAP_RECONCILER,
    CONSUMER_SECRET_RECONCILER,
    PRODUCER_CONFIG_MAP_RECONCILER,
    PRODUCER_SECRET_RECONCILER,
    ValueMaterializer,
)
from .producer import ProducerEngine

_LOG = logging.getLogger(__name__)


class SyncPipeline:
    """Consumer, then producer; both leave their output in the context."""

    def __init__(self, materializer: Optional[ValueMaterializer] = None) -> None:
        self.materializer = materializer or ValueMaterializer()
        self.consumer = ConsumerEngine(self.materializer)
        self.producer = ProducerEngine(self.materializer)

    def sync(self, resource: HasTensegritySpec, context: SyncContext) -> SyncContext:
        self.consumer.sync(resource, context)
        self.producer.sync(resource, context)
        return context

    def new_context(
        self,
        store: ObjectStore,
        options: Optional[EngineOptions] = None,
        tracker: Optional[Tracker] = None,
        dependent: Optional[ObjectKey] = None,
        clock: Clock = utc_now,
    ) -> SyncContext:
        return SyncContext(
            store=store,
            options=options or EngineOptions(),
            tracker=tracker,
            dependent=dependent,
            clock=clock,
        )


class ResourceReconciler:
    """Reconcile a single Tensegrity resource against the cluster."""

    def __init__(
        self,
        api: TensegrityAPI,
        options: Optional[EngineOptions] = None,
        tracker: Optional[Tracker] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.api = api
        self.options = options or EngineOptions()
        self.tracker = tracker
        self.clock = clock
        self.pipeline = SyncPipeline()
        self.children = ChildOperations(api)

    def reconcile(self, key: ObjectKey, dry_run: bool = False) -> Optional[TensegrityResource]:
        """Re-read ``key`` and bring its children and status up to date.

        Returns the reconciled resource, or ``None`` when it no longer exists.
        Fatal errors propagate so the caller can back off and retry.
        """

        try:
            body = self.api.get(key.api_version, key.kind, key.name, key.namespace)
        except NotFoundError:
            _LOG.debug("%s is gone; dropping its dependencies", key)
            if self.tracker is not None:
                self.tracker.forget(key)
            return None

        resource = TensegrityResource.from_dict(body)
        # Objects written without the admission webhook still get derived names and delegates.
        resource.spec.apply_defaults(resource.name, resource.namespace)
        errors = resource.spec.validate_spec()
        if errors:
            raise SpecValidationError(errors)

        previous = _previous_names(resource)
        observed = resource.status.to_dict()
        if self.tracker is not None:
            self.tracker.forget(key)
        context = self.pipeline.new_context(self.api, self.options, self.tracker, key, self.clock)
        self.pipeline.sync(resource, context)

        if dry_run:
            return resource

        applied = {}
        for slot in self.pipeline.materializer.desired_children(resource, context, previous):
            applied[slot.reconciler] = self.children.ensure_child(resource, slot)
        self.children.ensure_workload(
            resource,
            applied.get(CONSUMER_CONFIG_MAP_RECONCILER),
            applied.get(CONSUMER_SECRET_RECONCILER),
        )

        resource.status.observed_generation = resource.generation
        if resource.status.to_dict() != observed:
            updated = self.api.replace_status(resource.to_dict())
            resource.metadata = updated.get("metadata", resource.metadata)
        _LOG.info(
            "Reconciled %s (produced=%s, consumed=%s)", key, resource.status.produced, resource.status.consumed
        )
        return resource


def _previous_names(resource: TensegrityResource) -> Dict[str, str]:
    status = resource.status
    return {
        CONSUMER_CONFIG_MAP_RECONCILER: status.consumed_config_map_name,
        CONSUMER_SECRET_RECONCILER: status.consumed_secret_name,
        PRODUCER_CONFIG_MAP_RECONCILER: status.produced_config_map_name,
        PRODUCER_SECRET_RECONCILER: status.produced_secret_name,
    }
