"""
Helpers over the APIC response tree (parsed JSON).

The tree looks like:
    {"totalCount": "1", "imdata": [{"fvTenant": {"attributes": {"name": "t1", ...}}}]}

`search` follows a key path and fans out over
lists: searching ("imdata", "fvTenant", "attributes", "name") returns
["t1"], one hit per imdata entry that has the path. Serialising that hit list
gives '["t1"]', which is why projected values go through
`strip_square_brackets` and `strip_quotes`.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

Tree = Dict[str, Any]

_MISSING = object()
_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')


def _walk(obj: Any, hops: tuple) -> Any:
    if not hops:
        return obj
    if isinstance(obj, list):
        hits = []
        for item in obj:
            hit = _walk(item, hops)
            if hit is not _MISSING:
                hits.append(hit)
        return hits
    if isinstance(obj, dict) and hops[0] in obj:
        return _walk(obj[hops[0]], hops[1:])
    return _MISSING


def search(tree: Any, *hops: str) -> Any:
    """Follow `hops` through dicts, fanning out over lists. None when nothing matches."""
    hit = _walk(tree, hops)
    return None if hit is _MISSING else hit


def set_path(tree: Tree, value: Any, *hops: str) -> Tree:
    """Set `value` at the dict path `hops`, creating intermediate dicts."""
    if not hops:
        raise ValueError("set_path needs at least one key")
    cursor = tree
    for key in hops[:-1]:
        nxt = cursor.get(key)
        if not isinstance(nxt, dict):
            nxt = {}
            cursor[key] = nxt
        cursor = nxt
    cursor[hops[-1]] = value
    return tree


def to_string(obj: Any) -> str:
    """Compact JSON serialisation, the string form values are projected from."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def imdata(tree: Any) -> list:
    entries = tree.get("imdata") if isinstance(tree, dict) else None
    return entries if isinstance(entries, list) else []


def first_entry(tree: Any) -> Optional[Any]:
    entries = imdata(tree)
    return entries[0] if entries else None


def entry_class(entry: Any) -> Optional[str]:
    """Class tag of one imdata entry ({"<class>": {...}})."""
    if isinstance(entry, dict) and len(entry) == 1:
        return next(iter(entry))
    return None


def strip_square_brackets(text: str) -> str:
    if text.startswith("[") and text.endswith("]"):
        return text[1:-1]
    return text


def strip_quotes(text: str) -> str:
    """Replace every JSON string literal in `text` by its unquoted content."""
    return _QUOTED.sub(lambda m: json.loads(m.group(0)), text)
