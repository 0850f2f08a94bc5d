from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Union

import yaml

from errors import MissingFieldError, ParseError
from sanitize import get_nested, strip_ignored_fields


logger = logging.getLogger(__name__)

Document = Union[str, Mapping[str, Any]]


# -------------------------------------------------------------------
# Type descriptor
# -------------------------------------------------------------------

@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        api_version = (api_version or "").strip()
        # core group: "v1" -> ("", "v1")
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


# -------------------------------------------------------------------
# Parsing
# -------------------------------------------------------------------

def parse_config(text: str) -> Dict[str, Any]:
    """
    Parse one JSON (or YAML) object into a plain dict, without the
    server-managed fields.
    """
    if not isinstance(text, str):
        raise ParseError(f"parse: expected document text, got {type(text).__name__}")

    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        try:
            obj = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ParseError(f"parse: document is neither valid JSON nor YAML: {e}") from e

    if not isinstance(obj, dict):
        raise ParseError(f"parse: document must be an object, got {type(obj).__name__}")

    return strip_ignored_fields(obj)


def load_document(document: Document) -> Dict[str, Any]:
    """
    Accept document text or an already parsed mapping. Mappings are copied so
    that the caller's data is never mutated.
    """
    if isinstance(document, Mapping):
        return strip_ignored_fields(copy.deepcopy(dict(document)))
    return parse_config(document)


def dump_config(obj: Mapping[str, Any]) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, default=str)


# -------------------------------------------------------------------
# Accessors
# -------------------------------------------------------------------

def get_name(obj: Mapping[str, Any]) -> str:
    return get_nested(dict(obj), "metadata", "name") or ""


def get_namespace(obj: Mapping[str, Any]) -> str:
    return get_nested(dict(obj), "metadata", "namespace") or ""


def require_identity(obj: Mapping[str, Any]) -> None:
    for path in (("apiVersion",), ("kind",), ("metadata", "name")):
        val = get_nested(dict(obj), *path)
        if not isinstance(val, str) or not val.strip():
            raise MissingFieldError(f"parse: document requires non-empty '{'.'.join(path)}'")


def group_version_kind(obj: Mapping[str, Any]) -> GroupVersionKind:
    require_identity(obj)
    return GroupVersionKind.from_api_version(obj["apiVersion"], obj["kind"])


# -------------------------------------------------------------------
# Diff suppression
# -------------------------------------------------------------------

def equivalent(old: Document, new: Document) -> bool:
    """
    True when both documents describe the same desired state once
    server-managed fields are ignored.

    An unparsable side is never equivalent to anything: the update that
    follows reports the parse error itself.
    """
    try:
        a = load_document(old)
        b = load_document(new)
    except ParseError as e:
        logger.debug("Treating documents as different: %s", e)
        return False
    return _same(a, b)


def _same(a: Any, b: Any) -> bool:
    # bool is an int subclass: true must not equal 1. int and float
    # still compare by value, JSON has a single number type.
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_same(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_same(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list)) or isinstance(b, (dict, list)):
        return False
    return a == b
