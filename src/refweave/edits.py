"""Span editor: collapse and apply edits against the original text."""

from __future__ import annotations

from collections.abc import Iterable

from refweave.types import Edit


def collapse_edits(edits: Iterable[Edit]) -> list[Edit]:
    """Keep the last-produced edit per ``(start, end)``, ordered by start."""
    by_span: dict[tuple[int, int], Edit] = {}
    for edit in edits:
        by_span[(edit.start, edit.end)] = edit
    return sorted(by_span.values(), key=lambda e: (e.start, e.end))


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """Apply ``edits`` whose offsets refer to ``text``.

    Edits are spliced in ascending start order while tracking how far the
    output has drifted from the original offsets. An edit overlapping one
    already applied is skipped. The end-of-document sentinel appends.
    """
    output = text
    drift = 0
    applied_end = 0
    for edit in collapse_edits(edits):
        if edit.is_append:
            output += edit.text
            continue
        if edit.start < applied_end or edit.end > len(text):
            continue
        start = edit.start + drift
        end = edit.end + drift
        output = output[:start] + edit.text + output[end:]
        drift += len(edit.text) - (edit.end - edit.start)
        applied_end = edit.end
    return output
