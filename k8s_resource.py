from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError

from errors import ClientConfigError, DiscoveryError
from manifest import GroupVersionKind
from settings import Settings


logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Clients
# -------------------------------------------------------------------

@dataclass(frozen=True)
class ClusterClients:
    """
    Discovery + dynamic CRUD access to one cluster. Passed explicitly into
    every resolver/reconciler call.
    """
    api_client: client.ApiClient
    dynamic: DynamicClient

    def close(self) -> None:
        self.api_client.close()


def load_cluster_clients(settings: Settings) -> ClusterClients:
    # Isolated ApiClient: the library-wide default configuration is not touched.
    try:
        if settings.in_cluster:
            configuration = client.Configuration()
            config.load_incluster_config(client_configuration=configuration)
            api_client = client.ApiClient(configuration)
        else:
            api_client = config.new_client_from_config(
                config_file=settings.kubeconfig,
                context=settings.context,
            )
    except (config.ConfigException, OSError) as e:
        raise ClientConfigError(f"config: cannot load cluster credentials: {e}") from e

    try:
        dyn = DynamicClient(api_client)
    except ApiException as e:
        api_client.close()
        raise DiscoveryError(f"discovery: cannot reach API server: {e.status} {e.reason}", status=e.status) from e
    except urllib3.exceptions.HTTPError as e:
        api_client.close()
        raise DiscoveryError(f"discovery: cannot reach API server: {e}") from e

    return ClusterClients(api_client=api_client, dynamic=dyn)


# -------------------------------------------------------------------
# Resolution
# -------------------------------------------------------------------

@dataclass(frozen=True)
class ResourceMapping:
    gvk: GroupVersionKind
    plural: str
    namespaced: bool
    handle: Any  # kubernetes.dynamic.Resource

    def scope(self, namespace: str) -> Optional[str]:
        """Namespace argument for a dynamic call: None for cluster-scoped kinds."""
        return namespace if self.namespaced else None


def group_version_path(gvk: GroupVersionKind) -> str:
    if not gvk.version:
        raise DiscoveryError(f"discovery: apiVersion of kind {gvk.kind!r} has no version")
    if gvk.group == "":
        return f"/api/{gvk.version}"
    return f"/apis/{gvk.group}/{gvk.version}"


def _rest_mapping(dyn: DynamicClient, gvk: GroupVersionKind):
    """
    Resource handle for the kind at exactly the declared version.
    Discovery is refreshed first so newly installed CRDs are always seen.
    """
    try:
        dyn.resources.invalidate_cache()
        return dyn.resources.get(api_version=gvk.api_version, kind=gvk.kind)
    except ResourceNotFoundError as e:
        raise DiscoveryError(f"discovery: no matches for kind {gvk.kind!r} in version {gvk.api_version!r}") from e
    except ResourceNotUniqueError as e:
        raise DiscoveryError(f"discovery: kind {gvk.kind!r} is ambiguous in version {gvk.api_version!r}") from e
    except ApiException as e:
        raise DiscoveryError(
            f"discovery: resource mapping for {gvk} failed: {e.status} {e.reason}",
            status=e.status,
        ) from e
    except urllib3.exceptions.HTTPError as e:
        raise DiscoveryError(f"discovery: resource mapping for {gvk} failed: {e}") from e


def server_resources_for_group_version(
    api_client: client.ApiClient,
    gvk: GroupVersionKind,
    request_timeout: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """
    One discovery call: the APIResourceList of the kind's group/version.
    """
    path = group_version_path(gvk)
    try:
        data, _, _ = api_client.call_api(
            path,
            "GET",
            header_params={"Accept": "application/json"},
            response_type="object",
            auth_settings=["BearerToken"],
            _preload_content=True,
            _request_timeout=request_timeout,
        )
    except ApiException as e:
        raise DiscoveryError(f"discovery: GET {path} failed: {e.status} {e.reason}", status=e.status) from e
    except urllib3.exceptions.HTTPError as e:
        raise DiscoveryError(f"discovery: GET {path} failed: {e}") from e

    resources = data.get("resources") if isinstance(data, dict) else None
    if not isinstance(resources, list):
        raise DiscoveryError(f"discovery: malformed resource list from {path}")
    return resources


def _is_namespaced(api_client: client.ApiClient, gvk: GroupVersionKind, request_timeout: Optional[float]) -> bool:
    for rl in server_resources_for_group_version(api_client, gvk, request_timeout):
        if not isinstance(rl, dict):
            continue
        # skip subresources such as "cats/status"
        if "/" in (rl.get("name") or ""):
            continue
        if rl.get("kind") == gvk.kind:
            return bool(rl.get("namespaced", False))

    raise DiscoveryError(
        f"discovery: kind {gvk.kind!r} is missing from the resource list of {gvk.api_version!r}; "
        "cannot tell whether it is namespaced"
    )


def resolve_resource(
    clients: ClusterClients,
    gvk: GroupVersionKind,
    request_timeout: Optional[float] = None,
) -> ResourceMapping:
    handle = _rest_mapping(clients.dynamic, gvk)
    namespaced = _is_namespaced(clients.api_client, gvk, request_timeout)

    logger.debug(
        "Resolved %s to resource %r (%s)",
        gvk,
        handle.name,
        "namespaced" if namespaced else "cluster-scoped",
    )
    return ResourceMapping(gvk=gvk, plural=handle.name, namespaced=namespaced, handle=handle)
