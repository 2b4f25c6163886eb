"""Tests for attribute bag merging, name merging and the audit trail."""

import pytest

from models.schemas import MergeStrategy
from services.attribute_merger import (
    build_merged_name,
    deep_merge,
    merge_attributes,
    merge_audit_trail,
    strip_audit_trail,
    union_list,
)

# ============================================================================
# Structural Deep Merge Tests
# ============================================================================


class TestDeepMerge:
    def test_nested_maps_merge_recursively(self):
        target = {"address": {"city": "Lyon", "zip": "69001"}}
        source = {"address": {"city": "Paris", "street": "Rue X"}}

        merged = deep_merge(target, source)

        assert merged == {"address": {"city": "Lyon", "zip": "69001", "street": "Rue X"}}

    def test_prefer_source_overrides_scalars(self):
        merged = deep_merge({"city": "Lyon", "age": 30}, {"city": "Paris"}, prefer="source")

        assert merged == {"city": "Paris", "age": 30}

    def test_absent_target_value_takes_source(self):
        assert deep_merge({"city": None}, {"city": "Paris"}) == {"city": "Paris"}

    def test_absent_source_value_keeps_target(self):
        merged = deep_merge({"city": "Lyon"}, {"city": None}, prefer="source")

        assert merged == {"city": "Lyon"}

    def test_arrays_are_unioned(self):
        merged = deep_merge({"tags": ["a", "b"]}, {"tags": ["b", "c"]})

        assert merged == {"tags": ["a", "b", "c"]}

    def test_objects_inside_arrays_are_not_deduplicated(self):
        merged = deep_merge({"aliases": [{"n": 1}]}, {"aliases": [{"n": 1}]})

        assert merged == {"aliases": [{"n": 1}, {"n": 1}]}

    def test_inputs_are_not_mutated(self):
        target = {"address": {"city": "Lyon"}, "tags": ["a"]}
        source = {"address": {"zip": "69001"}, "tags": ["b"]}

        merge_attributes(target, source)

        assert target == {"address": {"city": "Lyon"}, "tags": ["a"]}
        assert source == {"address": {"zip": "69001"}, "tags": ["b"]}


class TestUnionList:
    def test_bool_and_int_stay_distinct(self):
        assert union_list([1, True], [True, 1, 0, False]) == [1, True, 0, False]

    def test_order_is_preserved(self):
        assert union_list(["c", "a"], ["b", "a"]) == ["c", "a", "b"]


# ============================================================================
# Strategy Merge Tests
# ============================================================================


class TestMergeStrategies:
    def test_target_priority(self):
        merged = merge_attributes(
            {"city": "Lyon"},
            {"city": "Paris", "age": 40},
            strategy=MergeStrategy.TARGET_PRIORITY,
        )

        assert merged == {"city": "Lyon", "age": 40}

    def test_source_priority(self):
        merged = merge_attributes(
            {"city": "Lyon", "age": 30},
            {"city": "Paris"},
            strategy=MergeStrategy.SOURCE_PRIORITY,
        )

        assert merged == {"city": "Paris", "age": 30}

    def test_merge_all_unions_arrays(self):
        merged = merge_attributes(
            {"tags": ["a", "b"]}, {"tags": ["b", "c"]}, strategy=MergeStrategy.MERGE_ALL
        )

        assert set(merged["tags"]) == {"a", "b", "c"}
        assert len(merged["tags"]) == 3

    def test_merge_all_keeps_longer_string(self):
        merged = merge_attributes(
            {"address": "12 Rue X", "city": "Lyon 1er"},
            {"address": "12 Rue X, 69001 Lyon", "city": "Lyon"},
            strategy=MergeStrategy.MERGE_ALL,
        )

        assert merged == {"address": "12 Rue X, 69001 Lyon", "city": "Lyon 1er"}

    def test_merge_all_other_conflicts_keep_target(self):
        merged = merge_attributes(
            {"age": 30, "meta": {"a": 1}},
            {"age": 31, "meta": "text"},
            strategy=MergeStrategy.MERGE_ALL,
        )

        assert merged == {"age": 30, "meta": {"a": 1}}

    def test_merge_all_fills_missing_and_null_keys(self):
        merged = merge_attributes(
            {"city": None}, {"city": "Lyon", "age": 4}, strategy=MergeStrategy.MERGE_ALL
        )

        assert merged == {"city": "Lyon", "age": 4}

    def test_default_strategy_is_deep_merge(self):
        merged = merge_attributes({"a": {"x": 1}}, {"a": {"y": 2}})

        assert merged == {"a": {"x": 1, "y": 2}}

    def test_strategy_accepts_plain_string(self):
        merged = merge_attributes({"a": 1}, {"a": 2}, strategy="source_priority")

        assert merged == {"a": 2}

    def test_unknown_strategy_raises(self):
        with pytest.raises(ValueError):
            merge_attributes({}, {}, strategy="newest_wins")


# ============================================================================
# Name and Audit Trail Tests
# ============================================================================


class TestBuildMergedName:
    def test_longer_name_wins(self):
        assert build_merged_name("Jo", "Jonathan Smith") == "Jonathan Smith"

    def test_tie_keeps_target(self):
        assert build_merged_name("Same", "Same") == "Same"
        assert build_merged_name("Anna", "Emma") == "Anna"

    def test_empty_side_returns_other(self):
        assert build_merged_name("", "Jean") == "Jean"
        assert build_merged_name("Jean", None) == "Jean"


class TestAuditTrail:
    def test_appends_source_id_as_string(self):
        assert merge_audit_trail({}, {}, 7) == ["7"]

    def test_accumulates_target_and_source_trails(self):
        trail = merge_audit_trail({"merged_from": ["1", "2"]}, {"merged_from": ["5"]}, 9)

        assert trail == ["1", "2", "5", "9"]

    def test_no_duplicate_entries(self):
        trail = merge_audit_trail({"merged_from": ["1"]}, {"merged_from": ["1"]}, 1)

        assert trail == ["1"]

    def test_malformed_trail_is_ignored(self):
        assert merge_audit_trail({"merged_from": "oops"}, {}, 3) == ["3"]

    def test_strip_audit_trail(self):
        assert strip_audit_trail({"a": 1, "merged_from": ["2"]}) == {"a": 1}
