import copy
from unittest.mock import MagicMock

import pytest

from tensegrity.errors import SpecValidationError
from tensegrity.operations.pipeline import ResourceReconciler, SyncPipeline
from tensegrity.resources.base import ObjectKey
from tensegrity.resources.workload import CONSUMER_CONFIG_MAP_VERSION_ANNOTATION
from tensegrity.tracker import Tracker

DEPLOYMENT_API = "k8s.tensegrity.fastforge.io/v1alpha1"
KEY = ObjectKey(DEPLOYMENT_API, "Deployment", "app", "web")


def _web(**spec):
    body = {
        "apiVersion": DEPLOYMENT_API,
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "app", "uid": "web-uid", "labels": {"app": "web"}},
        "spec": {
            "replicas": 2,
            "template": {"spec": {"containers": [{"name": "web", "image": "example/web:1"}]}},
            "delegates": [{"kind": "Namespace", "name": "app"}],
            "consumes": [
                {"apiVersion": DEPLOYMENT_API, "kind": "Deployment", "name": "db", "maps": {"DB_HOST": "host"}}
            ],
            "produces": [
                {"apiVersion": "v1", "kind": "ConfigMap", "name": "settings", "key": "URL", "fieldPath": ".data.url"}
            ],
            "consumesConfigMapName": "web-consumed",
            "consumesSecretName": "web-consumed",
            "producesConfigMapName": "web-produced",
            "producesSecretName": "web-produced",
        },
    }
    body["spec"].update(spec)
    return body


@pytest.fixture
def cluster(store, add_producer):
    store.add_namespace("app")
    add_producer("db", "app", [{"status": "Success", "key": "host", "value": "db.internal"}])
    store.add(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings", "namespace": "app"}, "data": {"url": "http://web"}}
    )
    store.add(_web())
    return store


@pytest.fixture
def api(cluster):
    api = MagicMock()
    api.get.side_effect = cluster.get

    def apply(definition):
        body = copy.deepcopy(definition.to_dict())
        body["metadata"]["resourceVersion"] = "11"
        cluster.add(copy.deepcopy(body))
        return body

    def replace_status(body):
        return cluster.add(copy.deepcopy(body))

    api.apply.side_effect = apply
    api.replace_status.side_effect = replace_status
    return api


def _applied(api, kind):
    return [call.args[0] for call in api.apply.call_args_list if call.args[0].kind == kind]


def test_reconcile_writes_children_workload_and_status(api, cluster, clock):
    resource = ResourceReconciler(api, clock=clock).reconcile(KEY)

    assert resource.status.consumed is True
    assert resource.status.produced is True

    config_maps = {definition.name: definition for definition in _applied(api, "ConfigMap")}
    assert config_maps["web-consumed"].to_dict()["data"] == {"DB_HOST": "db.internal"}
    assert config_maps["web-produced"].to_dict()["data"] == {"URL": "http://web"}
    assert config_maps["web-produced"].annotations == {"reconciler": "ProducerConfigMapReconciler"}
    assert _applied(api, "Secret") == []

    (workload,) = [definition for definition in _applied(api, "Deployment") if definition.api_version == "apps/v1"]
    pod = workload.spec["template"]
    assert workload.spec["replicas"] == 2
    assert pod["spec"]["containers"][0]["envFrom"] == [{"configMapRef": {"name": "web-consumed"}}]
    assert pod["metadata"]["annotations"][CONSUMER_CONFIG_MAP_VERSION_ANNOTATION] == "11"
    assert "consumes" not in workload.spec

    api.replace_status.assert_called_once()
    written = api.replace_status.call_args.args[0]["status"]
    assert written["producedConfigMapName"] == "web-produced"
    assert written["consumedConfigMapName"] == "web-consumed"
    assert {condition["type"] for condition in written["conditions"]} == {"Produced", "Consumed"}


def test_unchanged_status_is_not_written_again(api, clock):
    reconciler = ResourceReconciler(api, clock=clock)
    reconciler.reconcile(KEY)
    reconciler.reconcile(KEY)

    api.replace_status.assert_called_once()


def test_failed_key_deletes_owned_children(api, cluster, clock):
    reconciler = ResourceReconciler(api, clock=clock)
    reconciler.reconcile(KEY)
    cluster.objects.pop(("v1", "ConfigMap", "app", "settings"))

    resource = reconciler.reconcile(KEY)

    assert resource.status.produced is False
    assert resource.status.produced_config_map_name == ""
    api.delete.assert_called_once_with("v1", "ConfigMap", "web-produced", "app")


def test_child_not_owned_is_left_alone(api, cluster, clock):
    cluster.add(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "web-produced", "namespace": "app", "annotations": {"reconciler": "someone-else"}},
        }
    )
    body = _web(produces=[])
    body["status"] = {"producedConfigMapName": "web-produced"}
    cluster.add(body)

    ResourceReconciler(api, clock=clock).reconcile(KEY)

    api.delete.assert_not_called()


def test_invalid_spec_is_rejected(api, cluster, clock):
    cluster.add(_web(produces=[{"apiVersion": "v1", "kind": "ConfigMap", "name": "settings", "fieldPath": ".data.url"}]))

    with pytest.raises(SpecValidationError) as excinfo:
        ResourceReconciler(api, clock=clock).reconcile(KEY)

    assert "spec.produces[0].key: Required value" in str(excinfo.value)
    api.apply.assert_not_called()


def test_dry_run_writes_nothing(api, clock):
    resource = ResourceReconciler(api, clock=clock).reconcile(KEY, dry_run=True)

    assert resource.status.produced is True
    api.apply.assert_not_called()
    api.replace_status.assert_not_called()


def test_missing_resource_drops_dependencies(api, cluster, clock):
    tracker = Tracker()
    reconciler = ResourceReconciler(api, tracker=tracker, clock=clock)
    reconciler.reconcile(KEY)
    assert ObjectKey("v1", "ConfigMap", "app", "settings") in tracker.dependencies(KEY)

    cluster.objects.pop((DEPLOYMENT_API, "Deployment", "app", "web"))

    assert reconciler.reconcile(KEY) is None
    assert tracker.dependencies(KEY) == []


def test_pipeline_runs_consumer_before_producer(store, make_resource, clock):
    pipeline = SyncPipeline()
    calls = []
    pipeline.consumer = MagicMock(sync=lambda resource, context: calls.append("consumer"))
    pipeline.producer = MagicMock(sync=lambda resource, context: calls.append("producer"))

    pipeline.sync(make_resource(), pipeline.new_context(store, clock=clock))

    assert calls == ["consumer", "producer"]


def test_children_and_workload_are_owned_by_the_resource(api, clock):
    ResourceReconciler(api, clock=clock).reconcile(KEY)

    expected = [
        {
            "apiVersion": DEPLOYMENT_API,
            "kind": "Deployment",
            "name": "web",
            "uid": "web-uid",
            "controller": True,
            "blockOwnerDeletion": True,
        }
    ]
    for call in api.apply.call_args_list:
        definition = call.args[0]
        assert definition.metadata["ownerReferences"] == expected, definition.kind


def test_resource_without_admission_defaults_is_defaulted(api, cluster, clock):
    body = _web()
    for field in ("delegates", "consumesConfigMapName", "consumesSecretName", "producesConfigMapName", "producesSecretName"):
        body["spec"].pop(field)
    cluster.add(body)

    resource = ResourceReconciler(api, clock=clock).reconcile(KEY)

    assert resource.status.consumed is True
    assert resource.status.produced_config_map_name == "web-produced"
    assert sorted(definition.name for definition in _applied(api, "ConfigMap")) == ["web-consumed", "web-produced"]
