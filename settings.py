from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_NAMESPACE = "default"

# Create/delete are bounded like the provider defaults (five minutes).
DEFAULT_CREATE_TIMEOUT = 300.0
DEFAULT_DELETE_TIMEOUT = 300.0

ENV_PREFIX = "K8S_CUSTOM_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"", "0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    default_namespace: str = DEFAULT_NAMESPACE
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    in_cluster: bool = False
    create_timeout: Optional[float] = DEFAULT_CREATE_TIMEOUT
    read_timeout: Optional[float] = None
    update_timeout: Optional[float] = None
    delete_timeout: Optional[float] = DEFAULT_DELETE_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the process environment.

        Timeouts are seconds; an empty value or 0 disables the limit.
        """
        env = os.environ if environ is None else environ

        def _get(key: str) -> Optional[str]:
            val = env.get(ENV_PREFIX + key)
            return val.strip() if val is not None else None

        return cls(
            default_namespace=_get("DEFAULT_NAMESPACE") or DEFAULT_NAMESPACE,
            kubeconfig=env.get("KUBECONFIG") or None,
            context=_get("CONTEXT") or None,
            in_cluster=_parse_bool("IN_CLUSTER", _get("IN_CLUSTER")),
            create_timeout=_parse_timeout("CREATE_TIMEOUT", _get("CREATE_TIMEOUT"), DEFAULT_CREATE_TIMEOUT),
            read_timeout=_parse_timeout("READ_TIMEOUT", _get("READ_TIMEOUT"), None),
            update_timeout=_parse_timeout("UPDATE_TIMEOUT", _get("UPDATE_TIMEOUT"), None),
            delete_timeout=_parse_timeout("DELETE_TIMEOUT", _get("DELETE_TIMEOUT"), DEFAULT_DELETE_TIMEOUT),
        )

    def timeout_for(self, verb: str) -> Optional[float]:
        return getattr(self, f"{verb}_timeout", None)


def _parse_bool(key: str, val: Optional[str]) -> bool:
    if val is None:
        return False
    v = val.lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"{ENV_PREFIX}{key} must be a boolean, got {val!r}")


def _parse_timeout(key: str, val: Optional[str], default: Optional[float]) -> Optional[float]:
    if val is None:
        return default
    if val == "":
        return None
    try:
        seconds = float(val)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{key} must be a number of seconds, got {val!r}") from None
    if seconds < 0:
        raise ValueError(f"{ENV_PREFIX}{key} must not be negative")
    return seconds or None
