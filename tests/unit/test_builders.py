"""Tests for the Deployment and Service builders."""

from __future__ import annotations

import json

import pytest

from openfaas_functions_operator.builders.deployment import (
    build_deployment,
    build_env,
    build_node_selector,
    deployment_is_ready,
)
from openfaas_functions_operator.builders.metadata import (
    build_labels,
    build_owner_reference,
    controller_owner,
    is_owned_by,
)
from openfaas_functions_operator.builders.service import build_service
from openfaas_functions_operator.constants import ANNOTATION_LAST_APPLIED, LABEL_FUNCTION
from openfaas_functions_operator.models import FunctionSpec
from openfaas_functions_operator.utils.errors import QuantityError

MOUNT_PATH = "/var/openfaas/secrets"


def _spec(**fields) -> FunctionSpec:
    return FunctionSpec.from_dict({"service": "nodeinfo", "image": "functions/nodeinfo:latest", **fields})


def _container(deployment: dict) -> dict:
    return deployment["spec"]["template"]["spec"]["containers"][0]


class TestMetadata:
    """Test cases for shared child metadata."""

    def test_owner_reference(self, function_body):
        """Test that the owner reference makes the Function the controller."""
        ref = build_owner_reference(function_body)

        assert ref == {
            "apiVersion": "operato.rs/v1alpha1",
            "kind": "OpenFaaSFunction",
            "name": "nodeinfo",
            "uid": "fn-nodeinfo",
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def test_identifying_label_cannot_be_overridden(self):
        """Test that a user label with the identifying key loses."""
        labels = build_labels(_spec(labels={LABEL_FUNCTION: "other", "team": "a"}))

        assert labels == {LABEL_FUNCTION: "nodeinfo", "team": "a"}

    def test_ownership_helpers(self, function_body):
        """Test is_owned_by and controller_owner."""
        obj = {"metadata": {"ownerReferences": [build_owner_reference(function_body)]}}

        assert is_owned_by(obj, "fn-nodeinfo")
        assert not is_owned_by(obj, "someone-else")
        assert not is_owned_by(None, "fn-nodeinfo")
        assert controller_owner(obj)["uid"] == "fn-nodeinfo"
        assert controller_owner({"metadata": {}}) is None


class TestBuildDeployment:
    """Test cases for build_deployment."""

    def test_minimal(self, function_body):
        """Test the shape of a Deployment for a minimal spec."""
        dep = build_deployment(function_body, _spec(), "openfaas-fn", MOUNT_PATH)

        assert dep["apiVersion"] == "apps/v1"
        assert dep["kind"] == "Deployment"
        assert dep["metadata"]["name"] == "nodeinfo"
        assert dep["metadata"]["namespace"] == "openfaas-fn"
        assert dep["metadata"]["labels"] == {LABEL_FUNCTION: "nodeinfo"}
        assert dep["metadata"]["ownerReferences"][0]["uid"] == "fn-nodeinfo"
        assert dep["spec"]["replicas"] == 1
        assert dep["spec"]["selector"] == {"matchLabels": {LABEL_FUNCTION: "nodeinfo"}}
        assert dep["spec"]["template"]["metadata"]["labels"][LABEL_FUNCTION] == "nodeinfo"

        container = _container(dep)
        assert container["name"] == "nodeinfo"
        assert container["image"] == "functions/nodeinfo:latest"
        assert container["ports"] == [{"name": "http", "containerPort": 8080, "protocol": "TCP"}]
        assert container["readinessProbe"]["httpGet"]["path"] == "/_/health"
        assert container["securityContext"] == {"readOnlyRootFilesystem": False}
        assert container["env"] == []
        assert container["resources"] == {}
        assert "nodeSelector" not in dep["spec"]["template"]["spec"]

    def test_last_applied_annotation(self, function_body):
        """Test that the spec is recorded on the child."""
        spec = _spec(envVars={"A": "1"})
        dep = build_deployment(function_body, spec, "openfaas-fn", MOUNT_PATH)

        recorded = json.loads(dep["metadata"]["annotations"][ANNOTATION_LAST_APPLIED])
        assert recorded == spec.to_dict()

    def test_deterministic(self, function_body):
        """Test that equal specs give equal Deployments regardless of map ordering."""
        a = _spec(envVars={"B": "2", "A": "1"}, labels={"y": "1", "x": "2"}, constraints=["b == 1", "a == 2"])
        b = _spec(envVars={"A": "1", "B": "2"}, labels={"x": "2", "y": "1"}, constraints=["b == 1", "a == 2"])

        dep_a = build_deployment(function_body, a, "openfaas-fn", MOUNT_PATH)
        dep_b = build_deployment(function_body, b, "openfaas-fn", MOUNT_PATH)

        assert json.dumps(dep_a) == json.dumps(dep_b)

    def test_env_process_first(self):
        """Test that fprocess comes first and wins over envVars."""
        env = build_env(_spec(envProcess="node index.js", envVars={"fprocess": "other", "B": "2", "A": "1"}))

        assert env == [
            {"name": "fprocess", "value": "node index.js"},
            {"name": "A", "value": "1"},
            {"name": "B", "value": "2"},
        ]

    def test_node_selector(self):
        """Test constraint translation, ignoring malformed entries."""
        selector = build_node_selector(["disk == ssd", "zone==eu", "bogus", "a == b == c", " == x"])

        assert selector == {"disk": "ssd", "zone": "eu"}

    def test_resources(self, function_body):
        """Test that limits and requests are carried over as written."""
        spec = _spec(limits={"cpu": "100m", "memory": "64Mi"}, requests={"memory": "32Mi"})

        resources = _container(build_deployment(function_body, spec, "openfaas-fn", MOUNT_PATH))["resources"]

        assert resources == {"limits": {"cpu": "100m", "memory": "64Mi"}, "requests": {"memory": "32Mi"}}

    def test_invalid_resources(self, function_body):
        """Test that the builder refuses unparseable quantities."""
        with pytest.raises(QuantityError):
            build_deployment(function_body, _spec(limits={"cpu": "lots"}), "openfaas-fn", MOUNT_PATH)

    def test_secrets_projected_volume(self, function_body):
        """Test that secrets are projected into one read-only volume."""
        spec = _spec(secrets=["db", "api-key", "db"])
        dep = build_deployment(function_body, spec, "openfaas-fn", MOUNT_PATH)

        volumes = dep["spec"]["template"]["spec"]["volumes"]
        assert len(volumes) == 1
        assert volumes[0]["name"] == "nodeinfo-projected-secrets"
        sources = volumes[0]["projected"]["sources"]
        assert [s["secret"]["name"] for s in sources] == ["db", "api-key"]
        assert sources[0]["secret"]["items"] == [{"key": "db", "path": "db"}]
        assert _container(dep)["volumeMounts"] == [
            {"name": "nodeinfo-projected-secrets", "mountPath": MOUNT_PATH, "readOnly": True},
        ]

    def test_secrets_mount_path_override(self, function_body):
        """Test that secretsMountPath moves the mount."""
        spec = _spec(secrets=["db"], secretsMountPath="/custom")
        dep = build_deployment(function_body, spec, "openfaas-fn", MOUNT_PATH)

        assert _container(dep)["volumeMounts"][0]["mountPath"] == "/custom"

    def test_read_only_root_filesystem(self, function_body):
        """Test that a read-only root filesystem gets a writable /tmp."""
        dep = build_deployment(function_body, _spec(readOnlyRootFilesystem=True), "openfaas-fn", MOUNT_PATH)

        assert _container(dep)["securityContext"] == {"readOnlyRootFilesystem": True}
        assert dep["spec"]["template"]["spec"]["volumes"] == [{"name": "tmp", "emptyDir": {}}]
        assert _container(dep)["volumeMounts"] == [{"name": "tmp", "mountPath": "/tmp"}]


class TestDeploymentIsReady:
    """Test cases for deployment_is_ready."""

    def _dep(self, status, generation=2):
        return {"metadata": {"generation": generation}, "spec": {"replicas": 1}, "status": status}

    def test_ready(self):
        """Test a fully rolled out Deployment."""
        assert deployment_is_ready(self._dep({"readyReplicas": 1, "observedGeneration": 2}))

    def test_not_ready(self):
        """Test missing Deployments and missing replicas."""
        assert not deployment_is_ready(None)
        assert not deployment_is_ready(self._dep({}))

    def test_stale_observed_generation(self):
        """Test that a rollout not yet observed is not ready."""
        assert not deployment_is_ready(self._dep({"readyReplicas": 1, "observedGeneration": 1}))

    def test_failed_rollout(self):
        """Test that failure conditions mean not ready."""
        deadline = {"type": "Progressing", "status": "False", "reason": "ProgressDeadlineExceeded"}
        failure = {"type": "ReplicaFailure", "status": "True", "reason": "FailedCreate"}

        assert not deployment_is_ready(self._dep({"readyReplicas": 1, "conditions": [deadline]}))
        assert not deployment_is_ready(self._dep({"readyReplicas": 1, "conditions": [failure]}))


class TestBuildService:
    """Test cases for build_service."""

    def test_service(self, function_body):
        """Test the shape of the Service."""
        svc = build_service(function_body, _spec(), "openfaas-fn")

        assert svc["apiVersion"] == "v1"
        assert svc["kind"] == "Service"
        assert svc["metadata"]["name"] == "nodeinfo"
        assert svc["metadata"]["ownerReferences"][0]["controller"] is True
        assert svc["spec"]["type"] == "ClusterIP"
        assert svc["spec"]["selector"] == {LABEL_FUNCTION: "nodeinfo"}
        assert svc["spec"]["ports"] == [{"name": "http", "port": 8080, "targetPort": 8080, "protocol": "TCP"}]

    def test_user_labels(self, function_body):
        """Test that user labels and annotations reach the Service."""
        svc = build_service(function_body, _spec(labels={"team": "a"}, annotations={"note": "x"}), "openfaas-fn")

        assert svc["metadata"]["labels"]["team"] == "a"
        assert svc["metadata"]["annotations"]["note"] == "x"
