"""Tests for the kopf wiring."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import kopf

from openfaas_functions_operator.config import OperatorConfig
from openfaas_functions_operator.main import (
    build_controller,
    child_event,
    function_event,
    keys_mounting_secret,
    namespace_event,
    owner_key,
    run_operator,
    secret_event,
)


def _child(owner_kind="OpenFaaSFunction", controller=True):
    return {
        "metadata": {
            "name": "nodeinfo",
            "namespace": "openfaas-fn",
            "ownerReferences": [
                {"kind": owner_kind, "name": "nodeinfo-fn", "uid": "u1", "controller": controller},
            ],
        },
    }


class TestOwnerKey:
    """Test cases for owner_key."""

    def test_function_owner(self):
        """Test that a child maps to its Function's key."""
        assert owner_key(_child()) == "openfaas-fn/nodeinfo-fn"

    def test_other_owner(self):
        """Test that children of other controllers are ignored."""
        assert owner_key(_child(owner_kind="ReplicaSet")) is None

    def test_no_controller(self):
        """Test that a non-controller reference is ignored."""
        assert owner_key(_child(controller=False)) is None
        assert owner_key({"metadata": {"name": "x", "namespace": "y"}}) is None


class TestEventHandlers:
    """Test cases for the watch handlers."""

    def test_function_event_enqueues(self):
        """Test that a Function event enqueues its key."""
        memo = kopf.Memo(controller=MagicMock())

        asyncio.run(function_event(namespace="openfaas-fn", name="nodeinfo", memo=memo))

        memo.controller.enqueue.assert_called_once_with("openfaas-fn/nodeinfo")

    def test_child_event_enqueues_owner(self):
        """Test that a child event enqueues the controlling Function."""
        memo = kopf.Memo(controller=MagicMock())

        asyncio.run(child_event(body=_child(), memo=memo))

        memo.controller.enqueue.assert_called_once_with("openfaas-fn/nodeinfo-fn")

    def test_child_event_without_owner(self):
        """Test that unowned children are ignored."""
        memo = kopf.Memo(controller=MagicMock())

        asyncio.run(child_event(body=_child(owner_kind="Other"), memo=memo))

        memo.controller.enqueue.assert_not_called()


def _function(name, secrets=(), namespace="openfaas-fn"):
    return {
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"service": name, "image": "functions/nodeinfo:latest", "secrets": list(secrets)},
    }


def _memo(functions, restrict=True):
    gateway = MagicMock()
    gateway.list_functions.return_value = functions
    return kopf.Memo(
        config=OperatorConfig(restrict_to_functions_namespace=restrict),
        gateway=gateway,
        controller=MagicMock(),
    )


class TestExternalFacts:
    """Secrets and namespaces re-validate the Functions that depend on them."""

    def test_keys_mounting_secret(self):
        """Test that only Functions listing the secret are selected."""
        functions = [
            _function("a", ["db-pass"]),
            _function("b", ["other"]),
            {"metadata": {"name": "c", "namespace": "x"}},
        ]

        assert keys_mounting_secret(functions, "db-pass") == ["openfaas-fn/a"]

    def test_created_secret_enqueues_function(self):
        """Test that creating a missing secret enqueues the Function waiting for it."""
        memo = _memo([_function("nodeinfo", ["db-pass"]), _function("figlet")])

        asyncio.run(secret_event(
            event={"type": "ADDED"}, name="db-pass", namespace="openfaas-fn", memo=memo,
        ))

        memo.gateway.list_functions.assert_called_once_with("openfaas-fn")
        memo.controller.enqueue.assert_called_once_with("openfaas-fn/nodeinfo")

    def test_initial_listing_ignored(self):
        """Test that secrets seen at startup or merely modified enqueue nothing."""
        memo = _memo([_function("nodeinfo", ["db-pass"])])

        for event_type in (None, "MODIFIED"):
            asyncio.run(secret_event(
                event={"type": event_type}, name="db-pass", namespace="openfaas-fn", memo=memo,
            ))

        memo.gateway.list_functions.assert_not_called()
        memo.controller.enqueue.assert_not_called()

    def test_secret_outside_functions_namespace(self):
        """Test that a restricted operator does not list other namespaces."""
        memo = _memo([_function("nodeinfo", ["db-pass"])])

        asyncio.run(secret_event(event={"type": "ADDED"}, name="db-pass", namespace="default", memo=memo))

        memo.gateway.list_functions.assert_not_called()

    def test_created_namespace_enqueues_functions(self):
        """Test that a new namespace enqueues every Function in it."""
        memo = _memo([_function("a", namespace="team"), _function("b", namespace="team")], restrict=False)

        asyncio.run(namespace_event(event={"type": "ADDED"}, name="team", memo=memo))

        memo.gateway.list_functions.assert_called_once_with("team")
        assert [c[0][0] for c in memo.controller.enqueue.call_args_list] == ["team/a", "team/b"]
        memo.gateway.forget_namespace.assert_not_called()

    def test_deleted_namespace_forgotten(self):
        """Test that a deleted namespace is dropped from the lookup cache."""
        memo = _memo([])

        asyncio.run(namespace_event(event={"type": "DELETED"}, name="openfaas-fn", memo=memo))

        memo.gateway.forget_namespace.assert_called_once_with("openfaas-fn")


class TestBuildController:
    """Test cases for build_controller."""

    def test_list_keys_scoped_when_restricted(self):
        """Test that resync only lists the functions namespace when restricted."""
        gateway = MagicMock()
        gateway.list_functions.return_value = [{"metadata": {"namespace": "faas", "name": "a"}}]
        controller = build_controller(OperatorConfig(functions_namespace="faas", workers=2), gateway)

        assert controller.list_keys() == ["faas/a"]
        gateway.list_functions.assert_called_once_with("faas")
        assert controller.workers == 2

    def test_list_keys_cluster_wide(self):
        """Test that resync lists every namespace when unrestricted."""
        gateway = MagicMock()
        gateway.list_functions.return_value = []
        controller = build_controller(OperatorConfig(restrict_to_functions_namespace=False), gateway)

        controller.list_keys()

        gateway.list_functions.assert_called_once_with(None)


class TestRunOperator:
    """Test cases for run_operator."""

    @patch("openfaas_functions_operator.main.kopf.run")
    def test_restricted(self, mock_run):
        """Test that a restricted operator only watches its namespace."""
        run_operator(OperatorConfig(functions_namespace="faas"), context="kind-dev")

        kwargs = mock_run.call_args[1]
        assert kwargs["namespaces"] == ["faas"]
        assert kwargs["standalone"] is True
        assert kwargs["memo"].context == "kind-dev"

    @patch("openfaas_functions_operator.main.kopf.run")
    def test_cluster_wide(self, mock_run):
        """Test that an unrestricted operator watches the whole cluster."""
        run_operator(OperatorConfig(restrict_to_functions_namespace=False))

        assert mock_run.call_args[1]["clusterwide"] is True
