"""Attribute bag and name reconciliation for entity merges.

Two merge modes exist:

- ``deep_merge``: structural merge of arbitrary nested JSON maps. Arrays are
  unioned, maps merge recursively, and between scalars the target wins unless
  ``prefer="source"`` (a missing/None side always loses).
- ``merge_attributes``: strategy-based merge used by the merge coordinator,
  see ``MergeStrategy``.

Array de-duplication compares scalars by exact value only. Maps and arrays
nested inside arrays are never de-duplicated, even when deep-equal.
"""

import copy
from typing import Any, Iterable, Literal, Mapping, Optional

from models.schemas import MERGED_FROM_KEY, Attributes, MergeStrategy

Prefer = Literal["target", "source"]


def _scalar_key(item: Any) -> Optional[tuple]:
    # bool before int: True and 1 must stay distinct
    if item is None:
        return ("null",)
    if isinstance(item, bool):
        return ("bool", item)
    if isinstance(item, (int, float)):
        return ("num", item)
    if isinstance(item, str):
        return ("str", item)
    return None


def union_list(target: Iterable[Any], source: Iterable[Any]) -> list[Any]:
    """Order-preserving union of two arrays, de-duplicating scalars only."""
    out: list[Any] = []
    seen: set[tuple] = set()
    for item in [*target, *source]:
        key = _scalar_key(item)
        if key is None:
            out.append(item)
        elif key not in seen:
            seen.add(key)
            out.append(item)
    return out


def deep_merge(target: Any, source: Any, prefer: Prefer = "target") -> Any:
    """Recursively merge ``source`` into ``target`` without mutating either."""
    if isinstance(target, list) and isinstance(source, list):
        return union_list(copy.deepcopy(target), copy.deepcopy(source))

    if isinstance(target, dict) and isinstance(source, dict):
        out = copy.deepcopy(target)
        for key, value in source.items():
            if key not in out:
                out[key] = copy.deepcopy(value)
            else:
                out[key] = deep_merge(out[key], value, prefer=prefer)
        return out

    if target is None:
        return copy.deepcopy(source)
    if source is None:
        return target
    if prefer == "source":
        return copy.deepcopy(source)
    return target


def _merge_all(target: Mapping[str, Any], source: Mapping[str, Any]) -> Attributes:
    out = copy.deepcopy(dict(target))
    for key, source_value in source.items():
        target_value = out.get(key)
        if target_value is None:
            out[key] = copy.deepcopy(source_value)
        elif isinstance(target_value, list) and isinstance(source_value, list):
            out[key] = union_list(target_value, copy.deepcopy(source_value))
        elif isinstance(target_value, str) and isinstance(source_value, str):
            if len(source_value) > len(target_value):
                out[key] = source_value
        # any other conflict: target wins
    return out


def merge_attributes(
    target: Mapping[str, Any],
    source: Mapping[str, Any],
    strategy: MergeStrategy = MergeStrategy.DEEP_MERGE,
    prefer: Prefer = "target",
) -> Attributes:
    """Merge two attribute bags under the given conflict strategy.

    Args:
        target: Attributes of the surviving entity
        source: Attributes of the entity being absorbed
        strategy: Conflict resolution strategy
        prefer: Scalar tie-break for ``MergeStrategy.DEEP_MERGE``

    Returns:
        A new attribute dict; inputs are left untouched.
    """
    target = target or {}
    source = source or {}
    strategy = MergeStrategy(strategy)

    if strategy is MergeStrategy.TARGET_PRIORITY:
        return copy.deepcopy({**source, **target})
    if strategy is MergeStrategy.SOURCE_PRIORITY:
        return copy.deepcopy({**target, **source})
    if strategy is MergeStrategy.MERGE_ALL:
        return _merge_all(target, source)
    return deep_merge(dict(target), dict(source), prefer=prefer)


def build_merged_name(target: Optional[str], source: Optional[str]) -> str:
    """Keep the longer (usually more complete) name; the target wins ties."""
    t = (target or "").strip()
    s = (source or "").strip()
    if not t:
        return s
    if not s:
        return t
    return t if len(t) >= len(s) else s


def _trail(attributes: Mapping[str, Any]) -> list[str]:
    trail = attributes.get(MERGED_FROM_KEY)
    if not isinstance(trail, list):
        return []
    return [str(i) for i in trail]


def merge_audit_trail(
    target: Mapping[str, Any], source: Mapping[str, Any], source_id: Any
) -> list[str]:
    """Accumulate the ``merged_from`` trail: target's, then source's, then source_id."""
    out: list[str] = []
    for entry in [*_trail(target), *_trail(source), str(source_id)]:
        if entry not in out:
            out.append(entry)
    return out


def strip_audit_trail(attributes: Mapping[str, Any]) -> Attributes:
    """Return a copy of ``attributes`` without the ``merged_from`` key."""
    return {k: v for k, v in attributes.items() if k != MERGED_FROM_KEY}
