"""Stage resolved key values and turn them into child ConfigMaps and Secrets."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..resources.base import ResourceDefinition
from ..resources.config_map import ConfigMapConfig
from ..resources.secret import SecretConfig
from ..resources.tensegrity import HasTensegritySpec
from .context import StagedValues, SyncContext

_LOG = logging.getLogger(__name__)

PRODUCER_CONFIG_MAP_RECONCILER = "ProducerConfigMapReconciler"
PRODUCER_SECRET_RECONCILER = "ProducerSecretReconciler"
CONSUMER_CONFIG_MAP_RECONCILER = "ConsumerConfigMapReconciler"
CONSUMER_SECRET_RECONCILER = "ConsumerSecretReconciler"


@dataclass(frozen=True)
class ChildSlot:
    """One materialized output of a resource."""

    reconciler: str
    kind: str
    previous_name: str
    desired: Optional[ResourceDefinition]


class ValueMaterializer:
    """Split resolved values into plaintext and sensitive outputs."""

    def stage(
        self,
        plain_slot: StagedValues,
        secret_slot: StagedValues,
        plain_name: str,
        secret_name: str,
        plain: Dict[str, str],
        sensitive: Dict[str, str],
    ) -> tuple[str, str]:
        """Stage both buckets and return the names to publish in status.

        An empty bucket clears its slot and publishes an empty name.
        """

        published = []
        for slot, name, values in ((plain_slot, plain_name, plain), (secret_slot, secret_name, sensitive)):
            if values and name:
                slot.stage(name, values)
                published.append(name)
            else:
                slot.clear()
                published.append("")
        return published[0], published[1]

    def clear(self, *slots: StagedValues) -> None:
        for slot in slots:
            slot.clear()

    def desired_children(
        self,
        resource: HasTensegritySpec,
        context: SyncContext,
        previous_names: Optional[Dict[str, str]] = None,
    ) -> List[ChildSlot]:
        """Build the ConfigMaps and Secrets the staged values describe."""

        previous_names = previous_names or {}
        plan = [
            (CONSUMER_CONFIG_MAP_RECONCILER, "ConfigMap", context.consumer_config_map),
            (CONSUMER_SECRET_RECONCILER, "Secret", context.consumer_secret),
            (PRODUCER_CONFIG_MAP_RECONCILER, "ConfigMap", context.producer_config_map),
            (PRODUCER_SECRET_RECONCILER, "Secret", context.producer_secret),
        ]
        children = []
        for reconciler, kind, slot in plan:
            desired = None
            if slot.staged:
                if kind == "ConfigMap":
                    desired = ConfigMapConfig(
                        name=slot.name,
                        namespace=resource.namespace,
                        data=slot.values,
                        labels=resource.labels,
                        reconciler=reconciler,
                    ).to_resource()
                else:
                    desired = SecretConfig(
                        name=slot.name,
                        namespace=resource.namespace,
                        data=slot.values,
                        labels=resource.labels,
                        reconciler=reconciler,
                    ).to_resource()
                _LOG.debug("%s staged %s/%s with %d keys", reconciler, kind, slot.name, len(slot.values))
            children.append(ChildSlot(reconciler, kind, previous_names.get(reconciler, ""), desired))
        return children
