from typing import Any, Dict, Optional, Tuple


# Server-managed fields. Never part of an object's identity or of equality.
IGNORED_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("metadata", "creationTimestamp"),
    ("metadata", "resourceVersion"),
    ("metadata", "uid"),
    ("metadata", "selfLink"),
    ("metadata", "generation"),
    ("metadata", "managedFields"),
    ("status",),
)


def get_nested(obj: Dict[str, Any], *path: str) -> Optional[Any]:
    cur: Any = obj
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return None
        cur = cur[key]
    return cur


def remove_nested_field(obj: Dict[str, Any], *path: str) -> None:
    """
    Remove obj[path[0]]...[path[-1]] in place. Missing intermediate maps are
    not an error.
    """
    parent = get_nested(obj, *path[:-1]) if len(path) > 1 else obj
    if isinstance(parent, dict):
        parent.pop(path[-1], None)


def strip_ignored_fields(obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Structural normalization for Kubernetes API objects.
    Returns a copy without the server-managed fields; the input is untouched.
    Idempotent.
    """
    if not isinstance(obj, dict):
        return obj

    obj = dict(obj)

    md = obj.get("metadata")
    if isinstance(md, dict):
        obj["metadata"] = dict(md)

    for path in IGNORED_FIELDS:
        remove_nested_field(obj, *path)

    return obj
