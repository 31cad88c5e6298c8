"""Build the write payload {<class_name>: {"attributes": {...}}} for the APIC."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

from .errors import MalformedAttributes
from .tree import Tree, set_path


class LifecycleState(str, Enum):
    """Value of the `status` attribute stamped into a write payload."""
    CREATED_MODIFIED = "created, modified"
    MODIFIED = "modified"
    DELETED = "deleted"


def _as_remote_string(key: Any, value: Any) -> str:
    if not isinstance(key, str) or not key:
        raise MalformedAttributes(str(key), f"attribute key {key!r} must be a non-empty string")
    if isinstance(value, str):
        return value
    # bool is an int subclass but has no canonical APIC spelling
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise MalformedAttributes(key, f"attribute {key!r} has unsupported type {type(value).__name__}")


def build_payload(
    class_name: str,
    attributes: Mapping[str, Any],
    state: Optional[LifecycleState] = None,
) -> Tree:
    if not class_name:
        raise MalformedAttributes("class_name", "class_name is required to build a payload")
    payload: Tree = {class_name: {"attributes": {}}}
    for key, value in (attributes or {}).items():
        set_path(payload, _as_remote_string(key, value), class_name, "attributes", key)
    if state is not None:
        set_path(payload, LifecycleState(state).value, class_name, "attributes", "status")
    return payload

