"""Per-reconciliation context threaded through the engines."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from ..config import EngineOptions
from ..resources.base import ObjectKey
from ..resources.conditions import Clock, utc_now
from ..tracker import Tracker


class ObjectStore(Protocol):
    """Read access to cluster objects; raises ``NotFoundError`` for missing ones."""

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]: ...


@dataclass
class StagedValues:
    """Key values waiting to be written into a named ConfigMap or Secret."""

    name: str = ""
    values: Dict[str, str] = field(default_factory=dict)

    @property
    def staged(self) -> bool:
        return bool(self.name and self.values)

    def stage(self, name: str, values: Dict[str, str]) -> None:
        self.name = name
        self.values = dict(values)

    def clear(self) -> None:
        self.name = ""
        self.values = {}


@dataclass
class SyncContext:
    """Everything one reconciliation of one resource needs.

    Engines run in order consumer, producer; both read through
    :meth:`tracked_get` and leave their output in the staged slots.
    """

    store: ObjectStore
    options: EngineOptions = field(default_factory=EngineOptions)
    tracker: Optional[Tracker] = None
    dependent: Optional[ObjectKey] = None
    clock: Clock = utc_now
    producer_config_map: StagedValues = field(default_factory=StagedValues)
    producer_secret: StagedValues = field(default_factory=StagedValues)
    consumer_config_map: StagedValues = field(default_factory=StagedValues)
    consumer_secret: StagedValues = field(default_factory=StagedValues)

    def tracked_get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Read an object and register it as a dependency of the resource being reconciled.

        The dependency is recorded before the read so a missing object is
        watched as well.
        """

        if self.tracker is not None and self.dependent is not None:
            self.tracker.track(ObjectKey(api_version, kind, namespace or "", name), self.dependent)
        return self.store.get(api_version, kind, name, namespace)
