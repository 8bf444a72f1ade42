from tensegrity.resources.base import ObjectKey
from tensegrity.resources.config_map import ConfigMapConfig
from tensegrity.resources.secret import SecretConfig
from tensegrity.resources.tensegrity import (
    HasTensegritySpec,
    TensegrityResource,
    TensegritySpec,
    find_kind,
)
from tensegrity.resources.workload import CONSUMER_SECRET_VERSION_ANNOTATION, WorkloadConfig
from tensegrity.utils import deep_merge


def _resource(kind: str = "Deployment", api_version: str = "k8s.tensegrity.fastforge.io/v1alpha1", **spec):
    return TensegrityResource.from_dict(
        {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": {"name": "web", "namespace": "app", "labels": {"app": "web"}},
            "spec": {
                "template": {
                    "spec": {
                        "initContainers": [{"name": "migrate"}],
                        "containers": [{"name": "web", "envFrom": [{"configMapRef": {"name": "web-consumed"}}]}],
                    }
                },
                **spec,
            },
        }
    )


def test_secret_config_to_resource():
    definition = SecretConfig(
        name="web-produced", namespace="app", data={"TOKEN": "c2VjcmV0"}, reconciler="ProducerSecretReconciler"
    ).to_resource()

    body = definition.to_dict()
    assert body["apiVersion"] == "v1"
    assert body["kind"] == "Secret"
    assert body["type"] == "Opaque"
    assert body["data"] == {"TOKEN": "c2VjcmV0"}
    assert body["metadata"]["annotations"] == {"reconciler": "ProducerSecretReconciler"}
    assert "spec" not in body


def test_config_map_config_to_resource():
    definition = ConfigMapConfig(
        name="web-consumed",
        namespace="app",
        data={"DB_HOST": "db"},
        labels={"app": "web"},
        reconciler="ConsumerConfigMapReconciler",
    ).to_resource()

    assert definition.to_dict()["data"] == {"DB_HOST": "db"}
    assert definition.metadata["labels"] == {"app": "web"}


def test_apply_defaults_fills_names_and_delegate():
    spec = TensegritySpec.model_validate({"produces": [{"key": "URL", "fieldPath": "http://web"}]})

    assert spec.apply_defaults("web", "app")
    assert spec.produces[0].name == "web"
    assert [(delegate.kind, delegate.name) for delegate in spec.delegates] == [("Namespace", "app")]
    assert spec.produces_config_map_name == "web-produced"
    assert spec.consumes_secret_name == "web-consumed"
    assert not spec.apply_defaults("web", "app")


def test_apply_defaults_keeps_explicit_values():
    spec = TensegritySpec.model_validate(
        {"delegates": [{"kind": "Namespace", "name": "shared"}], "producesSecretName": "custom"}
    )
    spec.apply_defaults("web", "app")

    assert spec.delegates[0].name == "shared"
    assert spec.produces_secret_name == "custom"


def test_validate_spec_reports_every_violation():
    spec = TensegritySpec.model_validate(
        {
            "produces": [
                {"apiVersion": "v1", "key": "A", "fieldPath": ".data.a"},
                {"key": "A", "fieldPath": "{.data.b", "encoded": True},
            ],
            "consumes": [
                {"apiVersion": "x/v1", "kind": "Deployment", "name": "db", "maps": {"HOST": "host"}},
                {"apiVersion": "x/v1", "kind": "Deployment", "name": "db", "maps": {"HOST": "host"}},
            ],
            "delegates": [{"kind": "Cluster", "name": "all"}],
        }
    )

    errors = [str(error) for error in spec.validate_spec()]

    assert "spec.produces[0].kind: Required value: valid resource kind" in errors
    assert "spec.produces[0].name: Required value: valid resource name" in errors
    assert "spec.produces[1].key: Duplicate value: A" in errors
    assert "spec.produces[1].encoded: Invalid value: encoded field is allowed only when key is sensitive" in errors
    assert any(error.startswith("spec.produces[1].fieldPath: Invalid value") for error in errors)
    assert "spec.consumes[1]: Duplicate value: Deployment/db" in errors
    assert "spec.consumes[1].maps: Duplicate value: HOST" in errors
    assert "spec.delegates[0].kind: Invalid value: Cluster: kind must be one of: Namespace" in errors


def test_static_produce_is_valid():
    spec = TensegritySpec.model_validate({"produces": [{"key": "GREETING", "fieldPath": "hello"}]})
    assert spec.validate_spec() == []
    assert spec.produces[0].is_static


def test_resource_splits_workload_from_tensegrity_spec():
    resource = _resource(produces=[{"key": "URL", "fieldPath": "x"}])

    assert "template" in resource.workload
    assert "produces" not in resource.workload
    assert resource.key == ObjectKey("k8s.tensegrity.fastforge.io/v1alpha1", "Deployment", "app", "web")
    assert isinstance(resource, HasTensegritySpec)
    assert resource.to_dict()["spec"]["produces"][0]["key"] == "URL"


def test_find_kind():
    assert find_kind("argo.tensegrity.fastforge.io/v1alpha1", "Rollout").workload_api_version == "argoproj.io/v1alpha1"
    assert find_kind("tensegrity.fastforge.io/v1alpha1", "Static").workload_api_version is None
    assert find_kind("apps/v1", "Deployment") is None


def test_workload_wires_env_from_into_every_container():
    workload = WorkloadConfig.for_resource(
        _resource(), config_map_name="web-consumed", secret_name="web-consumed", secret_version="5"
    )
    definition = workload.to_resource()

    assert definition.api_version == "apps/v1"
    assert definition.annotations == {"reconciler": "DeploymentChildReconciler"}
    pod = definition.spec["template"]
    assert pod["spec"]["initContainers"][0]["envFrom"] == [
        {"secretRef": {"name": "web-consumed"}},
        {"configMapRef": {"name": "web-consumed"}},
    ]
    assert pod["spec"]["containers"][0]["envFrom"] == [
        {"configMapRef": {"name": "web-consumed"}},
        {"secretRef": {"name": "web-consumed"}},
    ]
    assert pod["metadata"]["annotations"] == {CONSUMER_SECRET_VERSION_ANNOTATION: "5"}


def test_static_kind_has_no_workload():
    static = _resource(kind="Static", api_version="tensegrity.fastforge.io/v1alpha1")
    assert WorkloadConfig.for_resource(static) is None


def test_deep_merge_combines_nested_dicts():
    base = {"metadata": {"labels": {"a": "1"}}, "data": {"x": "1"}}
    merged = deep_merge(base, {"metadata": {"labels": {"b": "2"}}, "data": "replaced"})

    assert merged == {"metadata": {"labels": {"a": "1", "b": "2"}}, "data": "replaced"}
    assert base == {"metadata": {"labels": {"a": "1"}}, "data": {"x": "1"}}
