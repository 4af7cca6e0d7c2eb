"""Tests for refweave.edits module."""
from __future__ import annotations

import pytest

from refweave.edits import apply_edits, collapse_edits
from refweave.types import END_OF_DOCUMENT, Edit


class TestEdit:
    def test_negative_start_rejected(self) -> None:
        with pytest.raises(ValueError):
            Edit(-1, 0, "")

    def test_inverted_span_rejected(self) -> None:
        with pytest.raises(ValueError):
            Edit(5, 2, "")

    def test_append_sentinel(self) -> None:
        edit = Edit.append("x")
        assert edit.is_append
        assert edit.start == END_OF_DOCUMENT
        assert not Edit(0, 0, "x").is_append


class TestCollapseEdits:
    def test_last_edit_per_span_wins(self) -> None:
        collapsed = collapse_edits([Edit(0, 1, "a"), Edit(4, 5, "c"), Edit(0, 1, "b")])
        assert [e.text for e in collapsed] == ["b", "c"]


class TestApplyEdits:
    def test_no_edits(self) -> None:
        assert apply_edits("unchanged", []) == "unchanged"

    def test_multiple_edits(self) -> None:
        edits = [Edit(6, 11, "there"), Edit(0, 5, "HELLO")]
        assert apply_edits("hello world", edits) == "HELLO there"

    def test_tracks_drift(self) -> None:
        assert apply_edits("xyz", [Edit(0, 1, "abc"), Edit(2, 3, "")]) == "abcy"

    def test_insertion(self) -> None:
        assert apply_edits("ac", [Edit(1, 1, "b")]) == "abc"

    def test_overlapping_edit_skipped(self) -> None:
        assert apply_edits("0123456789", [Edit(0, 5, "A"), Edit(3, 8, "B")]) == "A56789"

    def test_out_of_range_edit_skipped(self) -> None:
        assert apply_edits("abc", [Edit(5, 20, "x")]) == "abc"

    def test_append(self) -> None:
        assert apply_edits("doc", [Edit.append("\nX"), Edit(0, 1, "D")]) == "Doc\nX"
