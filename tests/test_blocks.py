"""Tests for tagindex.blocks — block parsing and reconciliation."""

from __future__ import annotations

from tagindex.blocks import Segment, find_markers, has_marker, parse_segments, reconcile

AI_OLD = "> [!example] Ai\n> - [[old|Old]]\n> \n> ^indexof-ai"
AI_NEW = "> [!example] Ai\n> - [[new|New]]\n> \n> ^indexof-ai"
WEB = "> [!example] Web\n> - [[site|Site]]\n> \n> ^indexof-web"


class TestParseSegments:
    def test_text_and_block_spans(self) -> None:
        text = "x\n> [!tldr] T\n> ^indexof-t\ny"
        assert parse_segments(text) == (
            Segment(0, 2),
            Segment(2, 26, "^indexof-t"),
            Segment(26, 28),
        )

    def test_marker_line_may_have_trailing_whitespace(self) -> None:
        text = "> [!example] T\n> ^indexof-t  \t\n"
        segments = parse_segments(text)
        assert segments[0].ref == "^indexof-t"

    def test_callout_without_marker_is_text(self) -> None:
        text = "> [!example] Not an index\n> - item\n\nbody\n"
        assert parse_segments(text) == (Segment(0, len(text)),)

    def test_block_interrupted_by_plain_line_is_text(self) -> None:
        text = "> [!example] X\nplain\n> ^indexof-x"
        assert all(seg.ref is None for seg in parse_segments(text))

    def test_empty(self) -> None:
        assert parse_segments("") == ()


class TestMarkers:
    def test_find_markers_distinct_in_order(self) -> None:
        text = "a ^indexof-a b ^indexof-b ^indexof-a"
        assert find_markers(text) == ["^indexof-a", "^indexof-b"]

    def test_has_marker(self) -> None:
        assert has_marker("text\n> ^indexof-root000")
        assert not has_marker("^index-of nothing")


class TestReconcile:
    def test_appends_missing_block(self) -> None:
        result = reconcile("# Note\n", [("^indexof-ai", AI_NEW)])
        assert result == "# Note\n\n\n" + AI_NEW

    def test_replaces_in_place(self) -> None:
        text = "intro\n\n" + AI_OLD + "\n\nafter\n"
        result = reconcile(text, [("^indexof-ai", AI_NEW)])
        assert result == "intro\n\n" + AI_NEW + "\n\nafter\n"

    def test_idempotent(self) -> None:
        blocks = [("^indexof-ai", AI_NEW), ("^indexof-web", WEB)]
        once = reconcile("intro\n\n" + AI_OLD + "\n\nafter\n", blocks)
        assert reconcile(once, blocks) == once

    def test_removing_appended_block_restores_text(self) -> None:
        original = "# Note\n"
        added = reconcile(original, [("^indexof-ai", AI_NEW)])
        assert reconcile(added, []) == original

    def test_stale_block_removed_in_middle(self) -> None:
        text = "a\n\n" + WEB + "\n\nb\n"
        result = reconcile(text, [])
        assert "^indexof-web" not in result
        assert result.startswith("a\n")
        assert result.endswith("b\n")

    def test_duplicate_blocks_collapse_to_first(self) -> None:
        text = AI_OLD + "\n\nmid\n\n" + AI_OLD
        result = reconcile(text, [("^indexof-ai", AI_NEW)])
        assert result == AI_NEW + "\n\nmid"
        assert result.count("^indexof-ai") == 1

    def test_first_desired_block_wins_on_shared_reference(self) -> None:
        first = "> [!example] A / B\n> \n> ^indexof-a-b"
        second = "> [!example] A b\n> \n> ^indexof-a-b"
        result = reconcile("", [("^indexof-a-b", first), ("^indexof-a-b", second)])
        assert first in result
        assert second not in result

    def test_foreign_callouts_untouched(self) -> None:
        text = "> [!example] Mine\n> - note\n\nbody\n"
        assert reconcile(text, []) == text

    def test_desired_order_for_appended_blocks(self) -> None:
        result = reconcile("", [("^indexof-web", WEB), ("^indexof-ai", AI_NEW)])
        assert result.index("^indexof-web") < result.index("^indexof-ai")

    def test_exactly_one_block_per_desired_reference(self) -> None:
        blocks = [("^indexof-ai", AI_NEW), ("^indexof-web", WEB)]
        text = WEB + "\n\n" + AI_OLD + "\n\n" + WEB + "\n\n> [!tldr] X\n> ^indexof-stale\n"
        result = reconcile(text, blocks)
        assert find_markers(result) == ["^indexof-web", "^indexof-ai"]
        assert result.count("^indexof-web") == 1
