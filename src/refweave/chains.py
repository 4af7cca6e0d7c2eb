"""Chained reference templates: ``{{r|a|p=2|b|pp2=4-5}}``.

A chained template can be kept as a template (names rewritten in place), or
split into ``<ref name=.. />`` markers each followed by an ``{{rp|...}}``
locator. The reverse direction, collapsing a run of markers and locators on
one line into a single chained template, is ``plan_chain_collapse``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, replace

from refweave.markup import extract_attr, mask_inert_spans, parse_chain_entries, split_template_params
from refweave.render import render_ref_self
from refweave.types import ChainEntry, ChainedTemplate, Edit


_COLLAPSIBLE_RUN_RE = re.compile(
    r"(?:(?:<ref\b[^>]*/>\s*(?:\{\{rp\|[^}]+\}\}\s*)?)|\{\{r\|[^}]+\}\}\s*(?:\{\{rp\|[^}]+\}\}\s*)?)+",
    re.IGNORECASE,
)
_TOKEN_RE = re.compile(r"<ref\b[^>]*/>|\{\{r\|[^}]+\}\}|\{\{rp\|[^}]+\}\}", re.IGNORECASE)
_R_TEMPLATE_RE = re.compile(r"^\{\{r\|(.+)\}\}$", re.IGNORECASE | re.DOTALL)
_TRAILING_DIGITS_RE = re.compile(r"\d+$")

_LOCATOR_KEYS: dict[str, str] = {
    "": "page", "p": "page", "page": "page",
    "pp": "pages", "pages": "pages",
    "at": "location", "location": "location", "loc": "location",
    "group": "group", "grp": "group", "g": "group",
}


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def _renumbered_key(key: str, target_index: int) -> str:
    base = _TRAILING_DIGITS_RE.sub("", key)
    if base == key:
        return base
    return f"{base}{target_index if target_index > 1 else ''}"


def build_chain_string(entries: list[ChainEntry], renumber: bool = False) -> str | None:
    """Render entries back into ``{{r|...}}``; None when no entry is a name.

    With ``renumber`` the name indices are compacted to 1, 2, ... and the
    digit suffixes of keyed entries follow.
    """
    if not any(e.is_name for e in entries):
        return None
    index_map: dict[int, int] = {}
    if renumber:
        for e in entries:
            if e.is_name and e.index not in index_map:
                index_map[e.index] = len(index_map) + 1
    fallback = max(index_map.values()) if index_map else None

    parts: list[str] = []
    for e in entries:
        target = index_map.get(e.index, fallback if fallback is not None else e.index) if renumber else e.index
        if e.key:
            key = _renumbered_key(e.key, target) if renumber else e.key
            parts.append(f"{key}={e.value}")
            continue
        if e.is_name:
            parts.append(e.value)
            continue
        suffix = str(target) if target > 1 else ""
        mapped = {"group": "group", "page": f"p{suffix}", "pages": f"pp{suffix}", "location": f"loc{suffix}"}.get(e.kind)
        if mapped:
            parts.append(f"{mapped}={e.value}")
    return "{{r|" + "|".join(parts) + "}}"


def _locator(page: str | None, pages: str | None, pages_label: str, location: str | None) -> str:
    parts: list[str] = []
    if page:
        parts.append(f"p={page}")
    if pages:
        parts.append(f"{pages_label}={pages}")
    if location:
        parts.append(f"at={location}")
    return "{{rp|" + "|".join(parts) + "}}" if parts else ""


def render_chained_template(
    chain: ChainedTemplate,
    resolve: Callable[[int, ChainEntry], str],
    as_template: bool,
) -> str | None:
    """Replacement text for ``chain``, or None when it should stay untouched.

    ``resolve(slot, entry)`` returns the final name for the name entry at
    position ``slot``.
    """
    entries = list(chain.entries)
    slots = {id(e): slot for slot, e in enumerate(entries)}
    if not any(e.is_name for e in entries):
        return None

    def resolved(entry: ChainEntry) -> ChainEntry:
        if not entry.is_name:
            return entry
        return replace(entry, value=resolve(slots[id(entry)], entry) or entry.value)

    if as_template:
        adjusted = [resolved(e) for e in entries]
        if adjusted == entries:
            return None
        return build_chain_string(adjusted)

    segments: list[str] = []
    used: set[int] = set()
    pending: list[ChainEntry] = []

    def flush() -> None:
        if pending:
            rendered = build_chain_string(pending, renumber=True)
            if rendered:
                segments.append(rendered)
            pending.clear()

    for pos, name_entry in enumerate(e for e in entries if e.is_name):
        index = name_entry.index or pos + 1
        relevant = [e for e in entries if e.index == index and id(e) not in used]
        ordered = [name_entry] + [e for e in relevant if e is not name_entry]
        if any(e.kind == "other" for e in relevant):
            pending.extend(resolved(e) for e in ordered)
            used.update(id(e) for e in ordered)
            continue

        flush()
        target = resolved(name_entry).value
        by_kind = {e.kind: e for e in relevant if not e.is_name}
        pages_entry = by_kind.get("pages")
        pages_label = "pages" if pages_entry and pages_entry.key and pages_entry.key.lower().startswith("pages") else "pp"
        group = by_kind["group"].value if "group" in by_kind else None
        chunk = render_ref_self(target, group)
        chunk += _locator(
            by_kind["page"].value if "page" in by_kind else None,
            pages_entry.value if pages_entry else None,
            pages_label,
            by_kind["location"].value if "location" in by_kind else None,
        )
        segments.append(chunk)
        used.update(id(e) for e in ordered)

    if pending:
        pending.extend(e for e in entries if id(e) not in used)
    flush()
    return "".join(segments) or None


# ---------------------------------------------------------------------------
# Collapsing runs of markers
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _ChainItem:
    name: str
    group: str | None = None
    page: str | None = None
    pages: str | None = None
    location: str | None = None

    @property
    def has_detail(self) -> bool:
        return bool(self.page or self.pages or self.location)


@dataclass(slots=True)
class _Locator:
    page: str | None = None
    pages: str | None = None
    location: str | None = None
    group: str | None = None
    supported: bool = True


def _parse_locator(raw: str) -> _Locator:
    inner = raw[len("{{rp|"):-2]
    loc = _Locator()
    for part in split_template_params(inner):
        key, value = "", part
        if "=" in part:
            key, value = (piece.strip() for piece in part.split("=", 1))
        kind = _LOCATOR_KEYS.get(key.lower())
        if kind is None:
            loc.supported = False
        else:
            setattr(loc, kind, value)
    return loc


def _items_from_chain(raw: str) -> list[_ChainItem] | None:
    m = _R_TEMPLATE_RE.match(raw)
    if not m:
        return None
    entries = parse_chain_entries(m.group(1))
    names = [e for e in entries if e.is_name]
    if not names or any(e.kind == "other" for e in entries):
        return None
    if any(not e.is_name and e.index > len(names) for e in entries):
        return None
    items: list[_ChainItem] = []
    for name in names:
        index = name.index or 1
        found = {e.kind: e.value for e in entries if not e.is_name and e.index == index}
        items.append(_ChainItem(
            name=name.value,
            group=found.get("group"),
            page=found.get("page"),
            pages=found.get("pages"),
            location=found.get("location"),
        ))
    return items


def build_chain(items: list[_ChainItem]) -> str:
    params: list[str] = []
    has_detail = any(item.has_detail for item in items)
    for i, item in enumerate(items, start=1):
        suffix = "" if i == 1 else str(i)
        params.append(item.name)
        if item.group:
            params.append(f"group{suffix if has_detail else ''}={item.group}")
        if item.page:
            params.append(f"p{suffix}={item.page}")
        if item.pages:
            params.append(f"pp{suffix}={item.pages}")
        if item.location:
            params.append(f"loc{suffix}={item.location}")
    return "{{r|" + "|".join(params) + "}}"


def _token_kind(raw: str) -> str:
    lower = raw.lower()
    if lower.startswith("<ref"):
        return "ref"
    if lower.startswith("{{rp|"):
        return "rp"
    return "r"


def collapse_block(block: str) -> str:
    """Merge the markers of one single-line run into chained templates."""
    if "\n" in block or "\r" in block:
        return block
    body = block.rstrip()
    trailing = block[len(body):]
    tokens = [m.group(0) for m in _TOKEN_RE.finditer(body)]
    if not tokens:
        return block

    parts: list[str] = []
    chain: list[_ChainItem] = []

    def flush() -> None:
        if chain:
            parts.append(build_chain(chain))
            chain.clear()

    i = 0
    while i < len(tokens):
        raw = tokens[i]
        kind = _token_kind(raw)
        locator_raw = tokens[i + 1] if i + 1 < len(tokens) and _token_kind(tokens[i + 1]) == "rp" else None
        i += 2 if (kind != "rp" and locator_raw) else 1
        if kind == "rp":
            flush()
            parts.append(raw)
            continue
        locator = _parse_locator(locator_raw) if locator_raw else _Locator()
        verbatim = raw + (locator_raw or "")

        if kind == "ref":
            name = extract_attr(raw, "name")
            if not name or not locator.supported:
                flush()
                parts.append(verbatim)
                continue
            chain.append(_ChainItem(
                name=name,
                group=extract_attr(raw, "group"),
                page=locator.page,
                pages=locator.pages,
                location=locator.location,
            ))
            continue

        items = _items_from_chain(raw)
        if items is None or not locator.supported:
            flush()
            parts.append(verbatim)
            continue
        if locator_raw:
            last = items[-1]
            last.page = locator.page or last.page
            last.pages = locator.pages or last.pages
            last.location = locator.location or last.location
            last.group = locator.group or last.group
        chain.extend(items)

    flush()
    return " ".join(parts) + trailing


def plan_chain_collapse(text: str) -> list[Edit]:
    """Edits that merge single-line runs of reference markers into ``{{r|...}}``."""
    masked = mask_inert_spans(text)
    edits: list[Edit] = []
    for m in _COLLAPSIBLE_RUN_RE.finditer(masked):
        block = text[m.start():m.end()]
        collapsed = collapse_block(block)
        if collapsed != block:
            edits.append(Edit(m.start(), m.end(), collapsed))
    return edits
