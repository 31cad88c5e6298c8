from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Set, Tuple

_IMMUTABLE = frozenset({"distinguished_name", "class_name"})


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


def mo_path(dn: str) -> str:
    """REST path of a managed object."""
    return "/api/mo/" + dn + ".json"


@dataclass
class ManagedObjectSpec:
    """
    One managed object under reconciliation.

    `attributes` is both the desired input and the observed output of an
    operation. `identity` equals the dn while the object is believed to exist
    and is empty otherwise. dn and class_name cannot be rebound.
    """
    distinguished_name: str
    class_name: str
    attributes: Dict[str, str] = field(default_factory=dict)
    ignored_attribute_keys: Set[str] = field(default_factory=set)
    identity: str = ""

    def __post_init__(self) -> None:
        if not self.distinguished_name:
            raise ValueError("distinguished_name is required")
        if not self.class_name:
            raise ValueError("class_name is required")
        self.attributes = dict(self.attributes or {})
        self.ignored_attribute_keys = set(self.ignored_attribute_keys or ())

    def __setattr__(self, name: str, value) -> None:
        if name in _IMMUTABLE and name in self.__dict__:
            raise AttributeError(f"{name} is immutable; replace the object instead")
        super().__setattr__(name, value)

    @property
    def path(self) -> str:
        return mo_path(self.distinguished_name)

    @property
    def exists(self) -> bool:
        return bool(self.identity)

    def detached(self) -> "ManagedObjectSpec":
        """Copy without identity, for reads whose outcome is committed separately."""
        return ManagedObjectSpec(
            distinguished_name=self.distinguished_name,
            class_name=self.class_name,
            attributes=dict(self.attributes),
            ignored_attribute_keys=set(self.ignored_attribute_keys),
        )


@dataclass(frozen=True)
class ReconcileResult:
    operation: Operation
    dn: str
    status: str
    attempts: int = 1
    drift: Tuple[str, ...] = ()


def drift_keys(before: Dict[str, str], after: Dict[str, str], ignored: Optional[Iterable[str]] = None) -> Tuple[str, ...]:
    """Keys whose value changed between two attribute maps (sorted)."""
    ignored = frozenset(ignored or ())
    keys = set(before) | set(after)
    return tuple(sorted(k for k in keys if k not in ignored and before.get(k) != after.get(k)))
