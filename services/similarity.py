"""Similarity scoring between entities.

Two independent scores exist:

- Raw match score: unbounded heuristic driving clustering. Exact matches on
  normalized identifiers add fixed points (email 70, phone 60, url 30, each
  social handle 15). Practical range 0-175+.
- Confidence: normalized [0, 1] score used for candidate ranking and advisory
  reports. Weighted blend of name edit-distance similarity (0.4), exact type
  match (0.3) and attribute key/value overlap (0.3), divided by the weights
  that actually contributed.
"""

from typing import Any, Mapping

from rapidfuzz.distance import Levenshtein

from models.schemas import MERGED_FROM_KEY, EntitySnapshot
from services.normalizer import extract_match_keys

EMAIL_MATCH_POINTS = 70
PHONE_MATCH_POINTS = 60
URL_MATCH_POINTS = 30
SOCIAL_MATCH_POINTS = 15

NAME_WEIGHT = 0.4
TYPE_WEIGHT = 0.3
ATTRIBUTE_WEIGHT = 0.3


def raw_match_score(keys_a: Mapping[str, Any], keys_b: Mapping[str, Any]) -> int:
    """Score two signatures produced by ``extract_match_keys``."""
    score = 0
    if keys_a.get("email") and keys_a.get("email") == keys_b.get("email"):
        score += EMAIL_MATCH_POINTS
    if keys_a.get("phone") and keys_a.get("phone") == keys_b.get("phone"):
        score += PHONE_MATCH_POINTS
    if keys_a.get("url") and keys_a.get("url") == keys_b.get("url"):
        score += URL_MATCH_POINTS

    socials_a = keys_a.get("socials") or {}
    socials_b = keys_b.get("socials") or {}
    for key, handle in socials_a.items():
        if socials_b.get(key) and socials_b[key] == handle:
            score += SOCIAL_MATCH_POINTS
    return score


def entity_match_score(a: EntitySnapshot, b: EntitySnapshot) -> int:
    """Raw match score of two entities; entities of different type never match."""
    if a.type != b.type:
        return 0
    return raw_match_score(
        extract_match_keys(a.attributes), extract_match_keys(b.attributes)
    )


def name_similarity(name_a: str, name_b: str) -> float:
    """1 - Levenshtein distance / longest length; 0 when either name is empty."""
    name_a = name_a or ""
    name_b = name_b or ""
    if not name_a or not name_b:
        return 0.0
    longest = max(len(name_a), len(name_b))
    return 1.0 - Levenshtein.distance(name_a, name_b) / longest


def attribute_overlap(attrs_a: Mapping[str, Any], attrs_b: Mapping[str, Any]) -> float:
    """Share of keys whose values agree across both bags.

    Identical value = 1 point, present in both but different = 0.5,
    present in only one = 0. Normalized by the size of the key union.
    """
    keys = (set(attrs_a) | set(attrs_b)) - {MERGED_FROM_KEY}
    if not keys:
        return 0.0

    points = 0.0
    for key in keys:
        if key in attrs_a and key in attrs_b:
            points += 1.0 if attrs_a[key] == attrs_b[key] else 0.5
    return points / len(keys)


def confidence(a: EntitySnapshot, b: EntitySnapshot) -> float:
    """Normalized likelihood in [0, 1] that two entities describe the same subject."""
    weighted = 0.0
    total_weight = 0.0

    if a.name or b.name:
        weighted += NAME_WEIGHT * name_similarity(a.name, b.name)
        total_weight += NAME_WEIGHT

    total_weight += TYPE_WEIGHT
    if a.type == b.type:
        weighted += TYPE_WEIGHT

    attrs_a = {k: v for k, v in a.attributes.items() if k != MERGED_FROM_KEY}
    attrs_b = {k: v for k, v in b.attributes.items() if k != MERGED_FROM_KEY}
    if attrs_a or attrs_b:
        weighted += ATTRIBUTE_WEIGHT * attribute_overlap(attrs_a, attrs_b)
        total_weight += ATTRIBUTE_WEIGHT

    return round(min(1.0, max(0.0, weighted / total_weight)), 4)
