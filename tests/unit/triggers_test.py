"""Tests for the trigger matcher."""

import pytest

from convex_hooks.core.triggers import TriggerMatcher, TriggerRule, classify, default_rules, glob_match
from convex_hooks.models import TriggerCategory

FUNCTION = TriggerCategory.FUNCTION_SAVE
SCHEMA = TriggerCategory.SCHEMA_SAVE
COMMIT = TriggerCategory.PRE_COMMIT


class TestGlobMatch:
    def test_double_star_matches_zero_segments(self) -> None:
        assert glob_match("convex/**/*.ts", "convex/messages.ts") is True

    def test_double_star_matches_nested_segments(self) -> None:
        assert glob_match("convex/**/*.ts", "convex/chat/threads/list.ts") is True

    def test_single_star_stays_within_segment(self) -> None:
        assert glob_match("convex/*.ts", "convex/chat/list.ts") is False

    def test_matching_is_case_sensitive(self) -> None:
        assert glob_match("convex/schema.ts", "convex/Schema.ts") is False

    def test_leading_dot_segment_is_ignored(self) -> None:
        assert glob_match("convex/schema.ts", "./convex/schema.ts") is True

    def test_windows_separators(self) -> None:
        assert glob_match("convex/**/*.ts", "convex\\chat\\list.ts") is True


class TestClassify:
    def test_function_file(self) -> None:
        assert classify("convex/messages.ts") == frozenset({FUNCTION, COMMIT})

    def test_javascript_function_file(self) -> None:
        assert classify("convex/legacy/users.js") == frozenset({FUNCTION, COMMIT})

    def test_schema_file_matches_several_categories(self) -> None:
        assert classify("convex/schema.ts") == frozenset({FUNCTION, SCHEMA, COMMIT})

    def test_generated_files_are_excluded(self) -> None:
        assert classify("convex/_generated/api.ts") == frozenset()
        assert classify("convex/_generated/api.d.ts") == frozenset()

    @pytest.mark.parametrize(
        "path",
        ["README.md", "src/App.tsx", "convex/notes.md", "", "convex", "other/convex/messages.ts"],
    )
    def test_unmatched_paths_yield_empty_set(self, path: str) -> None:
        assert classify(path) == frozenset()

    def test_classify_is_deterministic(self) -> None:
        results = {classify("convex/schema.ts") for _ in range(20)}
        assert len(results) == 1

    def test_rule_order_does_not_matter(self) -> None:
        rules = default_rules()
        forward = TriggerMatcher(rules)
        backward = TriggerMatcher(tuple(reversed(rules)))
        for path in ("convex/schema.ts", "convex/a/b.js", "README.md"):
            assert forward.classify(path) == backward.classify(path)

    def test_custom_functions_dir(self) -> None:
        matcher = TriggerMatcher(default_rules("backend/convex"))
        assert SCHEMA in matcher.classify("backend/convex/schema.ts")
        assert matcher.classify("convex/schema.ts") == frozenset()

    def test_custom_rules(self) -> None:
        matcher = TriggerMatcher([TriggerRule(SCHEMA, include=("db/*.sql",))])
        assert matcher.classify("db/001.sql") == frozenset({SCHEMA})
