"""
Response interpreter: classify an APIC response tree.

    NOT_FOUND     imdata is empty or its first entry is {}
    REMOTE_ERROR  an imdata entry has the class tag "error" (code + text)
    SUCCESS       anything else; the <class_name>.attributes subtree is authoritative

Whether a remote error is fatal depends on the (operation, code) pair, looked
up in BENIGN_ERRORS. Codes 1 and 107 on Delete mean the object is already
gone; on any other operation they are ordinary errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import RemoteError
from .models import Operation
from .tree import entry_class, first_entry, imdata, search, to_string


class Outcome(str, Enum):
    NOT_FOUND = "not_found"
    SUCCESS = "success"
    REMOTE_ERROR = "remote_error"


class Severity(str, Enum):
    FATAL = "fatal"
    BENIGN = "benign"


BENIGN_ERRORS: Dict[Tuple[Operation, int], Severity] = {
    (Operation.DELETE, 1): Severity.BENIGN,
    (Operation.DELETE, 107): Severity.BENIGN,
}


def severity(operation: Operation, code: Optional[int]) -> Severity:
    if code is None:
        return Severity.FATAL
    return BENIGN_ERRORS.get((operation, code), Severity.FATAL)


@dataclass(frozen=True)
class Interpretation:
    outcome: Outcome
    operation: Operation
    code: Optional[int] = None
    message: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def benign(self) -> bool:
        return self.outcome is Outcome.REMOTE_ERROR and severity(self.operation, self.code) is Severity.BENIGN

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.REMOTE_ERROR or self.benign

    def raise_for_error(self) -> "Interpretation":
        """Raise RemoteError unless the outcome is a success or a benign error."""
        if not self.ok:
            raise RemoteError(self.code, self.message)
        return self


def _parse_code(raw: Any) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def interpret(tree: Any, operation: Operation, class_name: Optional[str] = None) -> Interpretation:
    first = first_entry(tree)
    if first is None or to_string(first) == "{}":
        return Interpretation(Outcome.NOT_FOUND, operation)

    for entry in imdata(tree):
        if entry_class(entry) == "error":
            attrs = (entry.get("error") or {}).get("attributes") or {}
            return Interpretation(
                Outcome.REMOTE_ERROR,
                operation,
                code=_parse_code(attrs.get("code")),
                message=str(attrs.get("text", "")),
            )

    attributes: Dict[str, Any] = {}
    if class_name:
        hits = search(tree, "imdata", class_name, "attributes") or []
        if hits and isinstance(hits[0], dict):
            attributes = dict(hits[0])
    return Interpretation(Outcome.SUCCESS, operation, attributes=attributes)
