import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from unittest.mock import MagicMock

import pytest
import urllib3
from kubernetes import config
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError

import k8s_resource
from errors import ClientConfigError, DiscoveryError
from k8s_resource import ClusterClients, group_version_path, load_cluster_clients, resolve_resource
from manifest import GroupVersionKind
from settings import Settings


CAT = GroupVersionKind("app.example", "v1", "Cat")


def _clients(resources=None, plural="cats"):
    handle = MagicMock()
    handle.name = plural

    dynamic = MagicMock()
    dynamic.resources.get.return_value = handle

    api_client = MagicMock()
    if resources is None:
        resources = [
            {"name": "cats/status", "kind": "Cat", "namespaced": False},
            {"name": "cats", "kind": "Cat", "namespaced": True},
        ]
    api_client.call_api.return_value = ({"kind": "APIResourceList", "resources": resources}, 200, {})

    return ClusterClients(api_client=api_client, dynamic=dynamic), handle


def test_resolve_namespaced_kind():
    clients, handle = _clients()

    mapping = resolve_resource(clients, CAT)

    assert mapping.namespaced is True
    assert mapping.plural == "cats"
    assert mapping.handle is handle
    assert mapping.scope("default") == "default"
    clients.dynamic.resources.get.assert_called_once_with(api_version="app.example/v1", kind="Cat")
    assert clients.api_client.call_api.call_args[0][:2] == ("/apis/app.example/v1", "GET")


def test_resolve_cluster_scoped_kind():
    clients, _ = _clients(
        resources=[{"name": "clustercats", "kind": "ClusterCat", "namespaced": False}],
        plural="clustercats",
    )

    mapping = resolve_resource(clients, GroupVersionKind("app.example", "v1", "ClusterCat"))

    assert mapping.namespaced is False
    assert mapping.scope("default") is None


def test_resolve_core_group_uses_legacy_path():
    clients, _ = _clients(resources=[{"name": "configmaps", "kind": "ConfigMap", "namespaced": True}], plural="configmaps")

    resolve_resource(clients, GroupVersionKind("", "v1", "ConfigMap"))

    assert clients.api_client.call_api.call_args[0][0] == "/api/v1"


def test_group_version_path():
    assert group_version_path(GroupVersionKind("", "v1", "Namespace")) == "/api/v1"
    assert group_version_path(CAT) == "/apis/app.example/v1"
    with pytest.raises(DiscoveryError):
        group_version_path(GroupVersionKind("app.example", "", "Cat"))


def test_discovery_is_refreshed_on_every_call():
    clients, _ = _clients()

    resolve_resource(clients, CAT)
    resolve_resource(clients, CAT)

    assert clients.dynamic.resources.invalidate_cache.call_count == 2
    assert clients.api_client.call_api.call_count == 2


def test_unknown_kind_is_a_discovery_error():
    clients, _ = _clients()
    clients.dynamic.resources.get.side_effect = ResourceNotFoundError("No matches found")

    with pytest.raises(DiscoveryError) as exc:
        resolve_resource(clients, CAT)

    assert "Cat" in str(exc.value)
    assert isinstance(exc.value.__cause__, ResourceNotFoundError)
    clients.api_client.call_api.assert_not_called()


def test_ambiguous_kind_is_a_discovery_error():
    clients, _ = _clients()
    clients.dynamic.resources.get.side_effect = ResourceNotUniqueError("Multiple matches")

    with pytest.raises(DiscoveryError):
        resolve_resource(clients, CAT)


def test_forbidden_discovery_keeps_status():
    clients, _ = _clients()
    clients.api_client.call_api.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(DiscoveryError) as exc:
        resolve_resource(clients, CAT)

    assert exc.value.status == 403


def test_transport_failure_is_a_discovery_error():
    clients, _ = _clients()
    clients.dynamic.resources.get.side_effect = urllib3.exceptions.ProtocolError("connection reset")

    with pytest.raises(DiscoveryError):
        resolve_resource(clients, CAT)


def test_malformed_resource_list():
    clients, _ = _clients()
    clients.api_client.call_api.return_value = ({"kind": "Status"}, 200, {})

    with pytest.raises(DiscoveryError) as exc:
        resolve_resource(clients, CAT)

    assert "malformed" in str(exc.value)


def test_kind_missing_from_resource_list_is_not_guessed():
    clients, _ = _clients(resources=[{"name": "cats/status", "kind": "Cat", "namespaced": True}])

    with pytest.raises(DiscoveryError) as exc:
        resolve_resource(clients, CAT)

    assert "namespaced" in str(exc.value)


def test_load_cluster_clients_from_kubeconfig(monkeypatch):
    api_client = MagicMock()
    seen = {}

    def fake_new_client(config_file=None, context=None):
        seen.update(config_file=config_file, context=context)
        return api_client

    monkeypatch.setattr(k8s_resource.config, "new_client_from_config", fake_new_client)
    monkeypatch.setattr(k8s_resource, "DynamicClient", MagicMock(name="DynamicClient"))

    clients = load_cluster_clients(Settings(kubeconfig="/tmp/kubeconfig", context="kind-dev"))

    assert seen == {"config_file": "/tmp/kubeconfig", "context": "kind-dev"}
    assert clients.api_client is api_client
    k8s_resource.DynamicClient.assert_called_once_with(api_client)

    clients.close()
    api_client.close.assert_called_once_with()


def test_load_cluster_clients_bad_config(monkeypatch):
    def fake_new_client(config_file=None, context=None):
        raise config.ConfigException("Invalid kube-config file. No configuration found.")

    monkeypatch.setattr(k8s_resource.config, "new_client_from_config", fake_new_client)

    with pytest.raises(ClientConfigError):
        load_cluster_clients(Settings())


def test_load_cluster_clients_unreachable_server(monkeypatch):
    api_client = MagicMock()
    monkeypatch.setattr(k8s_resource.config, "new_client_from_config", lambda **kwargs: api_client)
    monkeypatch.setattr(
        k8s_resource,
        "DynamicClient",
        MagicMock(side_effect=ApiException(status=401, reason="Unauthorized")),
    )

    with pytest.raises(DiscoveryError) as exc:
        load_cluster_clients(Settings())

    assert exc.value.status == 401
    api_client.close.assert_called_once_with()


def test_request_timeout_reaches_discovery_call():
    clients, _ = _clients()

    resolve_resource(clients, CAT, request_timeout=7)

    assert clients.api_client.call_api.call_args.kwargs["_request_timeout"] == 7


def test_load_cluster_clients_in_cluster(monkeypatch):
    seen = {}

    def fake_incluster(client_configuration=None):
        client_configuration.host = "https://10.0.0.1:443"
        seen["configuration"] = client_configuration

    api_client = MagicMock()
    api_client_cls = MagicMock(return_value=api_client)
    monkeypatch.setattr(k8s_resource.config, "load_incluster_config", fake_incluster)
    monkeypatch.setattr(k8s_resource.client, "ApiClient", api_client_cls)
    monkeypatch.setattr(k8s_resource, "DynamicClient", MagicMock(name="DynamicClient"))

    clients = load_cluster_clients(Settings(in_cluster=True))

    api_client_cls.assert_called_once_with(seen["configuration"])
    assert seen["configuration"].host == "https://10.0.0.1:443"
    assert clients.api_client is api_client


def test_load_cluster_clients_in_cluster_without_service_account(monkeypatch):
    def fake_incluster(client_configuration=None):
        raise config.ConfigException("Service host/port is not set.")

    monkeypatch.setattr(k8s_resource.config, "load_incluster_config", fake_incluster)

    with pytest.raises(ClientConfigError):
        load_cluster_clients(Settings(in_cluster=True))


def test_load_cluster_clients_transport_failure(monkeypatch):
    api_client = MagicMock()
    monkeypatch.setattr(k8s_resource.config, "new_client_from_config", lambda **kwargs: api_client)
    monkeypatch.setattr(
        k8s_resource,
        "DynamicClient",
        MagicMock(side_effect=urllib3.exceptions.MaxRetryError(None, "/version", reason="connection refused")),
    )

    with pytest.raises(DiscoveryError) as exc:
        load_cluster_clients(Settings())

    assert exc.value.status is None
    assert isinstance(exc.value.__cause__, urllib3.exceptions.MaxRetryError)
    api_client.close.assert_called_once_with()
