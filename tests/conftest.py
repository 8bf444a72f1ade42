import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from tensegrity.errors import NotFoundError
from tensegrity.operations.context import SyncContext
from tensegrity.resources.tensegrity import TensegrityResource

DEPLOYMENT_API = "k8s.tensegrity.fastforge.io/v1alpha1"


class FakeStore:
    """In-memory object store keyed by apiVersion, kind, namespace and name."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.reads: List[Tuple[str, str, str]] = []

    def add(self, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata = body.setdefault("metadata", {})
        metadata.setdefault("resourceVersion", "1")
        key = (body["apiVersion"], body["kind"], metadata.get("namespace") or "", metadata["name"])
        self.objects[key] = copy.deepcopy(body)
        return body

    def add_namespace(self, name: str) -> None:
        self.add({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}})

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self.reads.append((kind, namespace or "", name))
        try:
            return copy.deepcopy(self.objects[(api_version, kind, namespace or "", name)])
        except KeyError:
            raise NotFoundError(kind, name, namespace) from None


class TickingClock:
    """Clock that advances one minute per call."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def context(store: FakeStore, clock: TickingClock) -> SyncContext:
    return SyncContext(store=store, clock=clock)


@pytest.fixture
def make_resource():
    def factory(name: str = "web", namespace: str = "app", kind: str = "Deployment", **spec: Any) -> TensegrityResource:
        return TensegrityResource.from_dict(
            {
                "apiVersion": DEPLOYMENT_API,
                "kind": kind,
                "metadata": {"name": name, "namespace": namespace, "labels": {"app": name}},
                "spec": spec,
            }
        )

    return factory


@pytest.fixture
def add_producer(store: FakeStore):
    """Store a producer resource with the given produced key statuses."""

    def factory(name: str, namespace: str, produced_keys: List[Dict[str, Any]], **status: Any) -> Dict[str, Any]:
        return store.add(
            {
                "apiVersion": DEPLOYMENT_API,
                "kind": "Deployment",
                "metadata": {"name": name, "namespace": namespace},
                "spec": {},
                "status": {"producedKeys": produced_keys, **status},
            }
        )

    return factory
