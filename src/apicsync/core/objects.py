"""
Declarative objects file -> typed ManagedObjectSpec entries.

    objects:
      - dn: "uni/tn-demo"
        class_name: "fvTenant"
        content:
          descr: "Demo tenant"
        ignored_keys: ["nameAlias"]
        state: present          # present (default) | absent

Validation happens once here; the reconciler only ever sees typed specs.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .models import ManagedObjectSpec

STATES = ("present", "absent")


class ObjectsFileError(ValueError):
    """Raised when the objects file is structurally invalid."""


@dataclass
class DeclaredObject:
    spec: ManagedObjectSpec
    state: str = "present"


def _scalar_str(value: Any, where: str) -> str:
    if isinstance(value, bool) or value is None or isinstance(value, (dict, list)):
        raise ObjectsFileError(f"{where} must be a string, got {type(value).__name__}")
    return str(value)


def parse_entry(raw: Any, index: int) -> DeclaredObject:
    where = f"objects[{index}]"
    if not isinstance(raw, dict):
        raise ObjectsFileError(f"{where} must be a mapping")

    unknown = set(raw) - {"dn", "class_name", "content", "ignored_keys", "state"}
    if unknown:
        raise ObjectsFileError(f"{where} has unknown fields: {', '.join(sorted(unknown))}")

    dn = raw.get("dn")
    class_name = raw.get("class_name")
    if not isinstance(dn, str) or not dn.strip():
        raise ObjectsFileError(f"{where}.dn is required")
    if not isinstance(class_name, str) or not class_name.strip():
        raise ObjectsFileError(f"{where}.class_name is required")

    content = raw.get("content") or {}
    if not isinstance(content, dict):
        raise ObjectsFileError(f"{where}.content must be a mapping")
    attributes = {str(k): _scalar_str(v, f"{where}.content.{k}") for k, v in content.items()}

    ignored = raw.get("ignored_keys") or []
    if not isinstance(ignored, list):
        raise ObjectsFileError(f"{where}.ignored_keys must be a list")

    state = str(raw.get("state") or "present").lower()
    if state not in STATES:
        raise ObjectsFileError(f"{where}.state must be one of {', '.join(STATES)}")

    spec = ManagedObjectSpec(
        distinguished_name=dn.strip(),
        class_name=class_name.strip(),
        attributes=attributes,
        ignored_attribute_keys={str(k) for k in ignored},
    )
    return DeclaredObject(spec=spec, state=state)


def parse_objects(data: Any) -> List[DeclaredObject]:
    if not isinstance(data, dict) or not isinstance(data.get("objects"), list):
        raise ObjectsFileError("Objects file must contain a top-level 'objects' list")
    out: List[DeclaredObject] = []
    seen: Dict[str, int] = {}
    for idx, raw in enumerate(data["objects"]):
        item = parse_entry(raw, idx)
        dn = item.spec.distinguished_name
        if dn in seen:
            raise ObjectsFileError(f"objects[{idx}].dn duplicates objects[{seen[dn]}]: {dn}")
        seen[dn] = idx
        out.append(item)
    return out


def load_objects(path: str) -> List[DeclaredObject]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Objects file not found: {path}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return parse_objects(data)
