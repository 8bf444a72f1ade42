"""Dependency tracking between reconciled resources and the objects they read."""
from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict, List, Set

from .resources.base import ObjectKey


class Tracker:
    """Records which resources read which objects.

    Every tracked read adds an edge ``object -> resource``; a change to the
    object later enqueues every resource that read it. Edges of a resource are
    replaced on each reconciliation so stale dependencies do not linger.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dependents: Dict[ObjectKey, Set[ObjectKey]] = defaultdict(set)
        self._dependencies: Dict[ObjectKey, Set[ObjectKey]] = defaultdict(set)

    def track(self, reference: ObjectKey, dependent: ObjectKey) -> None:
        with self._lock:
            self._dependents[reference].add(dependent)
            self._dependencies[dependent].add(reference)

    def lookup(self, reference: ObjectKey) -> List[ObjectKey]:
        with self._lock:
            return sorted(self._dependents.get(reference, ()))

    def forget(self, dependent: ObjectKey) -> None:
        with self._lock:
            for reference in self._dependencies.pop(dependent, set()):
                dependents = self._dependents.get(reference)
                if dependents is None:
                    continue
                dependents.discard(dependent)
                if not dependents:
                    del self._dependents[reference]

    def dependencies(self, dependent: ObjectKey) -> List[ObjectKey]:
        with self._lock:
            return sorted(self._dependencies.get(dependent, ()))
