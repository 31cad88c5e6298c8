"""
State projector: re-derive the local attribute map from the APIC's answer.

Only keys the caller declared are projected. Ignored keys keep the caller's
value; every other key takes the server's value after stripping the list and
quote decoration of its serialised form ('["a","b"]' -> 'a,b', '"x"' -> 'x').
A key the server does not report projects to "".
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping

from .errors import DecodeError
from .tree import search, strip_quotes, strip_square_brackets, to_string


def normalize_value(key: str, raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, dict):
        raise DecodeError(key, to_string(raw), "object value where a scalar was expected")
    if isinstance(raw, list):
        if any(isinstance(item, (dict, list)) for item in raw):
            raise DecodeError(key, to_string(raw), "nested value where a scalar was expected")
        text = to_string(raw)
    elif isinstance(raw, str):
        text = raw
    else:
        text = to_string(raw)
    try:
        return strip_quotes(strip_square_brackets(text))
    except ValueError as exc:
        raise DecodeError(key, text) from exc


def raw_attributes(tree: Any, class_name: str, keys: Iterable[str]) -> Dict[str, Any]:
    """Raw search hits for each key under imdata/<class_name>/attributes."""
    return {key: search(tree, "imdata", class_name, "attributes", key) for key in keys}


def project(
    desired: Mapping[str, str],
    ignored_keys: Iterable[str],
    response_attrs: Mapping[str, Any],
) -> Dict[str, str]:
    ignored = set(ignored_keys or ())
    observed: Dict[str, str] = {}
    for key, value in desired.items():
        if key in ignored:
            observed[key] = value
        else:
            observed[key] = normalize_value(key, response_attrs.get(key))
    return observed


def project_tree(
    desired: Mapping[str, str],
    ignored_keys: Iterable[str],
    tree: Any,
    class_name: str,
) -> Dict[str, str]:
    ignored = set(ignored_keys or ())
    wanted = [k for k in desired if k not in ignored]
    return project(desired, ignored, raw_attributes(tree, class_name, wanted))
