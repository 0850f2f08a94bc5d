from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Type

import urllib3
from kubernetes.client.exceptions import ApiException

from errors import (
    CreateError,
    CustomResourceError,
    DeleteError,
    NotFoundError,
    ParseError,
    ReadError,
    UpdateConflictError,
    UpdateError,
)
from k8s_resource import ClusterClients, ResourceMapping, resolve_resource
from manifest import (
    Document,
    equivalent,
    get_name,
    get_namespace,
    group_version_kind,
    load_document,
)
from sanitize import remove_nested_field, strip_ignored_fields
from settings import DEFAULT_NAMESPACE


logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def effective_namespace(obj: Dict[str, Any], default_namespace: str = DEFAULT_NAMESPACE) -> str:
    return get_namespace(obj) or default_namespace


def external_id(mapping: ResourceMapping, obj: Dict[str, Any], default_namespace: str = DEFAULT_NAMESPACE) -> str:
    name = get_name(obj)
    if mapping.namespaced:
        return f"{effective_namespace(obj, default_namespace)}/{name}"
    return name


def parse_external_id(identifier: str) -> Tuple[Optional[str], str]:
    """
    "ns/name" -> ("ns", "name"); "name" -> (None, "name").
    """
    identifier = (identifier or "").strip()
    namespace, sep, name = identifier.partition("/")
    if not sep:
        namespace, name = "", namespace
    if not name or "/" in name or (sep and not namespace):
        raise ParseError(f"parse: invalid resource id {identifier!r}, expected 'name' or 'namespace/name'")
    return (namespace or None), name


def _describe(mapping: ResourceMapping, obj: Dict[str, Any], namespace: Optional[str]) -> str:
    name = get_name(obj)
    where = f"{namespace}/{name}" if namespace else name
    return f"{mapping.gvk.kind} {where!r}"


def _api_failure(
    error_cls: Type[CustomResourceError],
    verb: str,
    what: str,
    exc: Exception,
) -> CustomResourceError:
    if isinstance(exc, ApiException):
        return error_cls(
            f"{verb}: could not {verb} {what}: kubernetes api error: {exc.status} {exc.reason}",
            status=exc.status,
        )
    timed_out = isinstance(exc, urllib3.exceptions.TimeoutError) or isinstance(
        getattr(exc, "reason", None), urllib3.exceptions.TimeoutError
    )
    if timed_out:
        return error_cls(
            f"{verb}: {what} timed out: {exc}; the request may still be applied, read the object before retrying"
        )
    return error_cls(f"{verb}: could not {verb} {what}: {exc}")


def _timeout_kwargs(request_timeout: Optional[float]) -> Dict[str, Any]:
    # Per-request limit enforced by the kubernetes client's transport.
    return {"_request_timeout": request_timeout} if request_timeout else {}


def _declares_namespace(obj: Dict[str, Any]) -> bool:
    md = obj.get("metadata")
    return isinstance(md, dict) and "namespace" in md


def _prepare(
    clients: ClusterClients,
    document: Document,
    default_namespace: str,
    request_timeout: Optional[float],
) -> Tuple[Dict[str, Any], ResourceMapping, Optional[str]]:
    obj = load_document(document)
    mapping = resolve_resource(clients, group_version_kind(obj), request_timeout=request_timeout)
    namespace = mapping.scope(effective_namespace(obj, default_namespace))
    return obj, mapping, namespace


def _to_dict(resp: Any) -> Dict[str, Any]:
    return resp.to_dict() if hasattr(resp, "to_dict") else dict(resp)


def _fetch(
    mapping: ResourceMapping,
    name: str,
    namespace: Optional[str],
    what: str,
    request_timeout: Optional[float],
    verb: str = "read",
) -> Dict[str, Any]:
    try:
        resp = mapping.handle.get(name=name, namespace=namespace, **_timeout_kwargs(request_timeout))
    except ApiException as e:
        if e.status == 404:
            raise NotFoundError(f"{verb}: {what} not found", status=404) from e
        raise _api_failure(ReadError, verb, what, e) from e
    except urllib3.exceptions.HTTPError as e:
        raise _api_failure(ReadError, verb, what, e) from e
    return _to_dict(resp)


# -------------------------------------------------------------------
# Operations
#
# request_timeout bounds every single HTTP request (seconds). A request
# that times out on the client may still have been applied by the API
# server; read before retrying a write.
# -------------------------------------------------------------------

def create(
    clients: ClusterClients,
    document: Document,
    default_namespace: str = DEFAULT_NAMESPACE,
    request_timeout: Optional[float] = None,
) -> str:
    """
    Create the object and return its external id ("name" or "namespace/name").
    """
    obj, mapping, namespace = _prepare(clients, document, default_namespace, request_timeout)
    what = _describe(mapping, obj, namespace)

    if mapping.namespaced:
        logger.debug("This is a namespaced resource, creating %s", what)
    else:
        logger.debug("This is a cluster-scoped resource, creating %s", what)

    try:
        mapping.handle.create(body=obj, namespace=namespace, **_timeout_kwargs(request_timeout))
    except (ApiException, urllib3.exceptions.HTTPError) as e:
        raise _api_failure(CreateError, "create", what, e) from e

    return external_id(mapping, obj, default_namespace)


def read(
    clients: ClusterClients,
    document: Document,
    default_namespace: str = DEFAULT_NAMESPACE,
    request_timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Live object, normalized for comparison with the desired document.

    metadata.namespace is dropped unless the desired document declared it, so
    the result stays symmetric with what the caller submitted.
    """
    obj, mapping, namespace = _prepare(clients, document, default_namespace, request_timeout)
    what = _describe(mapping, obj, namespace)

    res = strip_ignored_fields(_fetch(mapping, get_name(obj), namespace, what, request_timeout))

    if not _declares_namespace(obj):
        remove_nested_field(res, "metadata", "namespace")

    return res


def update(
    clients: ClusterClients,
    document: Document,
    previous: Optional[Document] = None,
    default_namespace: str = DEFAULT_NAMESPACE,
    request_timeout: Optional[float] = None,
) -> bool:
    """
    Replace the live object with the desired document.

    When `previous` (the last known desired state) is equivalent to
    `document` nothing is sent and False is returned.
    """
    if previous is not None and equivalent(previous, document):
        logger.debug("No changes to apply, skipping update")
        return False

    obj, mapping, namespace = _prepare(clients, document, default_namespace, request_timeout)
    what = _describe(mapping, obj, namespace)

    current = _fetch(mapping, get_name(obj), namespace, what, request_timeout, verb="update")
    resource_version = (current.get("metadata") or {}).get("resourceVersion")
    obj.setdefault("metadata", {})["resourceVersion"] = resource_version

    try:
        mapping.handle.replace(body=obj, namespace=namespace, **_timeout_kwargs(request_timeout))
    except ApiException as e:
        if e.status == 409:
            raise UpdateConflictError(
                f"update: {what} was modified concurrently (resourceVersion {resource_version}), re-read and retry",
                status=409,
            ) from e
        raise _api_failure(UpdateError, "update", what, e) from e
    except urllib3.exceptions.HTTPError as e:
        raise _api_failure(UpdateError, "update", what, e) from e

    return True


def delete(
    clients: ClusterClients,
    document: Document,
    default_namespace: str = DEFAULT_NAMESPACE,
    request_timeout: Optional[float] = None,
) -> None:
    """
    Delete the object. An object that is already gone raises DeleteError
    with status 404; tolerating that is up to the caller.
    """
    obj, mapping, namespace = _prepare(clients, document, default_namespace, request_timeout)
    what = _describe(mapping, obj, namespace)

    try:
        mapping.handle.delete(name=get_name(obj), namespace=namespace, **_timeout_kwargs(request_timeout))
    except (ApiException, urllib3.exceptions.HTTPError) as e:
        raise _api_failure(DeleteError, "delete", what, e) from e


def import_resource(
    clients: ClusterClients,
    identifier: str,
    api_version: str,
    kind: str,
    default_namespace: str = DEFAULT_NAMESPACE,
    request_timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Read an existing object by external id so it can be tracked.
    """
    namespace, name = parse_external_id(identifier)
    metadata: Dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace

    return read(
        clients,
        {"apiVersion": api_version, "kind": kind, "metadata": metadata},
        default_namespace=default_namespace,
        request_timeout=request_timeout,
    )
