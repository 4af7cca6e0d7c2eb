"""Markup scanner: templates, parameters, ``<ref>`` tags and containers.

All scanners report half-open character offsets into the text they were
given. ``scan_document`` matches against a masked copy of the document in
which comments, ``<nowiki>``, ``<pre>`` and ``<syntaxhighlight>`` blocks are
blanked out with spaces, so offsets stay aligned with the original while
markup inside those blocks is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from refweave.types import (
    ChainEntry,
    ChainEntryKind,
    ChainedTemplate,
    ReferencesTagMatch,
    RefTagMatch,
    TemplateMatch,
    TemplateParam,
)


_INERT_BLOCK_RE = re.compile(
    r"<!--.*?-->"
    r"|<nowiki\b[^>]*>.*?</nowiki\s*>"
    r"|<nowiki\b[^>]*/\s*>"
    r"|<pre\b[^>]*>.*?</pre\s*>"
    r"|<syntaxhighlight\b[^>]*>.*?</syntaxhighlight\s*>",
    re.DOTALL | re.IGNORECASE,
)

_ATTRS = r"((?:\s+[\w-]+\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s\"'/>]+))*)"
_FULL_REF_RE = re.compile(r"<ref\b" + _ATTRS + r"\s*>(.*?)</ref\s*>", re.DOTALL | re.IGNORECASE)
_SELF_REF_RE = re.compile(r"<ref\b" + _ATTRS + r"\s*/\s*>", re.IGNORECASE)

_REFERENCES_BLOCK_RE = re.compile(
    r"<references\b([^>]*?)(?<!/)>(.*?)</references\s*>", re.DOTALL | re.IGNORECASE,
)
_REFERENCES_SELF_RE = re.compile(r"<references\b([^>]*?)/\s*>", re.IGNORECASE)

_NAME_TOKEN_RE = re.compile(r"\s*([A-Za-z0-9_:\-]*)")
_TEMPLATE_NAME_RE = re.compile(r"^\{\{\s*([^{}|]+?)\s*(?:\||\}\}$)", re.DOTALL)
_PIPE_AHEAD_RE = re.compile(r"\s*\|")

_CHAIN_NAME_KEY_RE = re.compile(r"^(?:name|n)?(\d*)$", re.IGNORECASE)
_CHAIN_GROUP_KEY_RE = re.compile(r"^(?:grp|group|g)(\d*)$", re.IGNORECASE)
_CHAIN_PAGE_KEY_RE = re.compile(r"^(?:page|p)(\d*)$", re.IGNORECASE)
_CHAIN_PAGES_KEY_RE = re.compile(r"^(?:pages|pp)(\d*)$", re.IGNORECASE)
_CHAIN_LOCATION_KEY_RE = re.compile(r"^(?:at|location|loc)(\d*)$", re.IGNORECASE)
_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")

_AUTO_NAME_RE = re.compile(
    r"^(?::\d+|(?:ref|reference|note|auto(?:generated)?\d*))$", re.IGNORECASE,
)
_VE_NAME_RE = re.compile(r"^Reference[A-Z]+$")


# ---------------------------------------------------------------------------
# Masking
# ---------------------------------------------------------------------------


def mask_inert_spans(text: str) -> str:
    """Blank out comments and literal blocks, preserving length."""
    return _INERT_BLOCK_RE.sub(lambda m: " " * len(m.group(0)), text)


def sanitize_markup(text: str) -> str:
    """Remove comments and literal blocks entirely."""
    return _INERT_BLOCK_RE.sub("", text or "")


# ---------------------------------------------------------------------------
# Braces and parameters
# ---------------------------------------------------------------------------


def match_braces(text: str, open_idx: int) -> int:
    """End offset of the template opening at ``open_idx``, or -1 if unterminated."""
    depth = 0
    k = open_idx
    n = len(text)
    while k < n:
        if text.startswith("{{", k):
            depth += 1
            k += 2
            continue
        if text.startswith("}}", k):
            depth -= 1
            k += 2
            if depth == 0:
                return k
            continue
        k += 1
    return -1


def _split_spans(text: str, *, track_links: bool) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    depth = 0
    link_depth = 0
    start = 0
    k = 0
    n = len(text)
    while k < n:
        pair = text[k:k + 2]
        if pair == "{{":
            depth += 1
            k += 2
            continue
        if pair == "}}":
            depth = max(depth - 1, 0)
            k += 2
            continue
        if track_links and pair == "[[":
            link_depth += 1
            k += 2
            continue
        if track_links and pair == "]]":
            link_depth = max(link_depth - 1, 0)
            k += 2
            continue
        if text[k] == "|" and depth == 0 and link_depth == 0:
            spans.append((start, k))
            start = k + 1
        k += 1
    if start < n:
        spans.append((start, n))
    return spans


def split_params(text: str) -> list[str]:
    """Split on ``|`` outside nested templates and wiki links; parts trimmed."""
    return [text[s:e].strip() for s, e in _split_spans(text, track_links=True)]


def split_template_params(text: str) -> list[str]:
    """Split on ``|`` outside nested templates only; parts trimmed."""
    return [text[s:e].strip() for s, e in _split_spans(text, track_links=False)]


def _template_body(text: str) -> str:
    working = text.strip()
    if not working.startswith("{{"):
        return working
    if working.endswith("}}") and len(working) >= 4:
        working = working[2:-2].strip()
    else:
        working = working[2:].strip()
    pipe = working.find("|")
    return "" if pipe == -1 else working[pipe + 1:]


def parse_template_params(text: str) -> list[TemplateParam]:
    """Parse ``|a|b=c`` or a whole ``{{name|...}}`` into parameters.

    Positional values are named ``"1"``, ``"2"``, ... in order.
    """
    working = re.sub(r"^\s*\|?", "", _template_body(text), count=1)
    if not working:
        return []
    params: list[TemplateParam] = []
    numbered = 0
    for part in split_params(working):
        eq = part.find("=")
        if eq == -1:
            numbered += 1
            params.append(TemplateParam(name=str(numbered), value=part))
        else:
            params.append(TemplateParam(name=part[:eq].strip(), value=part[eq + 1:]))
    return params


def pick_template_param(params: list[TemplateParam] | tuple[TemplateParam, ...], *keys: str) -> str | None:
    """First non-blank value among ``keys`` (case-insensitive), in param order."""
    wanted = {k.lower() for k in keys if k}
    if not wanted:
        return None
    for param in params:
        if param.name and param.name.lower() in wanted and param.value.strip():
            return param.value
    return None


@dataclass(frozen=True, slots=True)
class ParamSpan:
    """Raw location of one parameter inside a template's text.

    ``start``/``end`` delimit the text between pipes; ``value_start`` is the
    offset just after ``=`` (or ``start`` for a positional value).
    """

    name: str | None
    start: int
    end: int
    value_start: int


def param_spans(template_text: str) -> list[ParamSpan]:
    """Parameter spans of a ``{{name|...}}`` string, offsets relative to it."""
    if not template_text.startswith("{{"):
        return []
    close = template_text.rfind("}}")
    body_end = close if close >= 2 else len(template_text)
    name_match = _NAME_TOKEN_RE.match(template_text, 2)
    cursor = name_match.end() if name_match else 2
    pipe = template_text.find("|", cursor, body_end)
    if pipe == -1:
        return []
    body_start = pipe + 1
    spans: list[ParamSpan] = []
    for s, e in _split_spans(template_text[body_start:body_end], track_links=True):
        raw = template_text[body_start + s:body_start + e]
        eq = raw.find("=")
        if eq == -1:
            spans.append(ParamSpan(None, body_start + s, body_start + e, body_start + s))
        else:
            spans.append(ParamSpan(raw[:eq].strip(), body_start + s, body_start + e, body_start + s + eq + 1))
    return spans


def extract_attr(attrs: str, name: str) -> str | None:
    """Value of attribute ``name`` (quoted or bare); None if absent or empty."""
    pattern = re.compile(
        r"(?<![\w-])" + re.escape(name) + r"\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'>]+))",
        re.IGNORECASE,
    )
    m = pattern.search(attrs or "")
    if not m:
        return None
    value = next((g for g in m.groups() if g is not None), "").strip()
    return value or None


def template_name(text: str) -> str | None:
    """Name of the template that ``text`` consists of, e.g. ``cite web``."""
    m = _TEMPLATE_NAME_RE.match(text.strip())
    return m.group(1) if m else None


def is_single_template(text: str) -> bool:
    stripped = text.strip()
    return stripped.startswith("{{") and match_braces(stripped, 0) == len(stripped)


def find_template_close(text: str) -> int:
    """Offset of the closing ``}}`` of the template starting at 0, or -1."""
    if not text.startswith("{{"):
        return -1
    end = match_braces(text, 0)
    return end - 2 if end != -1 else -1


# ---------------------------------------------------------------------------
# Templates and tags
# ---------------------------------------------------------------------------


def find_templates(text: str, names: list[str] | tuple[str, ...], *, masked: str | None = None) -> list[TemplateMatch]:
    """Balanced occurrences of the templates called ``names`` (case-insensitive).

    Matching runs on ``masked`` when given; content and parameters are read
    from ``text``.
    """
    scan = masked if masked is not None else text
    wanted = {n.lower() for n in names}
    matches: list[TemplateMatch] = []
    i = 0
    while True:
        idx = scan.find("{{", i)
        if idx == -1:
            break
        token = _NAME_TOKEN_RE.match(scan, idx + 2)
        name_end = token.end() if token else idx + 2
        name = token.group(1) if token else ""
        if name.lower() not in wanted:
            i = idx + 2
            continue
        end = match_braces(scan, idx)
        if end == -1:
            i = name_end
            continue
        content = text[idx:end]
        matches.append(TemplateMatch(
            start=idx,
            end=end,
            name=name,
            content=content,
            params=tuple(parse_template_params(text[name_end:end - 2])),
        ))
        i = end
    return matches


def find_references_tags(text: str, *, masked: str | None = None) -> list[ReferencesTagMatch]:
    scan = masked if masked is not None else text
    matches: list[ReferencesTagMatch] = []
    for m in _REFERENCES_BLOCK_RE.finditer(scan):
        matches.append(ReferencesTagMatch(
            start=m.start(),
            end=m.end(),
            content=text[m.start():m.end()],
            attrs=text[m.start(1):m.end(1)].strip(),
            inner=text[m.start(2):m.end(2)],
            inner_start=m.start(2),
        ))
    for m in _REFERENCES_SELF_RE.finditer(scan):
        matches.append(ReferencesTagMatch(
            start=m.start(),
            end=m.end(),
            content=text[m.start():m.end()],
            attrs=text[m.start(1):m.end(1)].strip(),
            inner="",
            inner_start=m.end(),
        ))
    matches.sort(key=lambda tag: tag.start)
    return matches


def _in_spans(idx: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= idx < end for start, end in spans)


def _ref_match(text: str, m: re.Match[str], *, full: bool) -> RefTagMatch:
    attrs = text[m.start(1):m.end(1)]
    return RefTagMatch(
        start=m.start(),
        end=m.end(),
        attrs=attrs,
        name=extract_attr(attrs, "name"),
        group=extract_attr(attrs, "group"),
        content=text[m.start(2):m.end(2)] if full else None,
    )


def scan_full_refs(
    text: str,
    *,
    masked: str | None = None,
    start: int = 0,
    end: int | None = None,
    exclude: list[tuple[int, int]] | None = None,
) -> list[RefTagMatch]:
    """``<ref ...>content</ref>`` tags within ``[start, end)``."""
    scan = masked if masked is not None else text
    stop = len(scan) if end is None else end
    return [
        _ref_match(text, m, full=True)
        for m in _FULL_REF_RE.finditer(scan, start, stop)
        if not (exclude and _in_spans(m.start(), exclude))
    ]


def scan_self_closing_refs(
    text: str,
    *,
    masked: str | None = None,
    exclude: list[tuple[int, int]] | None = None,
) -> list[RefTagMatch]:
    scan = masked if masked is not None else text
    return [
        _ref_match(text, m, full=False)
        for m in _SELF_REF_RE.finditer(scan)
        if not (exclude and _in_spans(m.start(), exclude))
    ]


# ---------------------------------------------------------------------------
# Chained reference templates
# ---------------------------------------------------------------------------


def parse_chain_entries(param_string: str) -> list[ChainEntry]:
    """Parse the parameters of ``{{r|...}}`` into indexed entries.

    Names without a numeric suffix take the next index; a suffix sets the
    index directly. Page/pages/location keys without a suffix attach to
    index 1. A bare group attaches to 1 unless an index-1 group was already
    seen and the last name index is above 1, in which case it follows that
    name. Other keys use their trailing digits or the current name index.
    """
    trimmed = param_string[1:] if param_string.startswith("|") else param_string
    if not trimmed:
        return []
    entries: list[ChainEntry] = []
    name_counter = 0
    last_name_index = 0
    has_group_index1 = False
    for part in split_template_params(trimmed):
        raw = part.strip()
        if not raw:
            continue
        key, value = "", raw
        if "=" in raw:
            key, value = (piece.strip() for piece in raw.split("=", 1))

        kind: ChainEntryKind = "other"
        idx = max(name_counter, 1)
        name_m = _CHAIN_NAME_KEY_RE.match(key)
        if name_m:
            kind = "name"
            if name_m.group(1):
                idx = int(name_m.group(1))
            else:
                name_counter += 1
                idx = name_counter
            last_name_index = idx
        elif m := _CHAIN_GROUP_KEY_RE.match(key):
            kind = "group"
            if m.group(1):
                idx = int(m.group(1))
            elif has_group_index1 and last_name_index > 1:
                idx = last_name_index
            else:
                idx = 1
            if idx == 1:
                has_group_index1 = True
        elif m := _CHAIN_PAGE_KEY_RE.match(key):
            kind = "page"
            idx = int(m.group(1)) if m.group(1) else 1
        elif m := _CHAIN_PAGES_KEY_RE.match(key):
            kind = "pages"
            idx = int(m.group(1)) if m.group(1) else 1
        elif m := _CHAIN_LOCATION_KEY_RE.match(key):
            kind = "location"
            idx = int(m.group(1)) if m.group(1) else 1
        elif m := _TRAILING_DIGITS_RE.search(key):
            idx = int(m.group(1))

        if not value:
            continue
        if kind == "name" and idx > name_counter:
            name_counter = idx
        entries.append(ChainEntry(key=key or None, value=value, kind=kind, index=idx or 1, is_name=kind == "name"))
    return entries


def find_chained_templates(
    text: str,
    *,
    masked: str | None = None,
    exclude: list[tuple[int, int]] | None = None,
) -> list[ChainedTemplate]:
    """Every ``{{r|...}}`` occurrence, including ones nested in other templates."""
    scan = masked if masked is not None else text
    chains: list[ChainedTemplate] = []
    i = 0
    while True:
        idx = scan.find("{{", i)
        if idx == -1:
            break
        i = idx + 2
        token = _NAME_TOKEN_RE.match(scan, idx + 2)
        if token is None or token.group(1).lower() != "r":
            continue
        if not _PIPE_AHEAD_RE.match(scan, token.end()):
            continue
        if exclude and _in_spans(idx, exclude):
            continue
        end = match_braces(scan, idx)
        if end == -1:
            continue
        param_string = text[token.end():end - 2].strip()
        chains.append(ChainedTemplate(
            id=len(chains),
            start=idx,
            end=end,
            entries=tuple(parse_chain_entries(param_string)),
        ))
        i = end
    return chains


# ---------------------------------------------------------------------------
# Document scan
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Every reference-related occurrence in one document."""

    templates: tuple[TemplateMatch, ...]
    references_tags: tuple[ReferencesTagMatch, ...]
    full_refs: tuple[RefTagMatch, ...]
    self_closing_refs: tuple[RefTagMatch, ...]
    chains: tuple[ChainedTemplate, ...]
    ldr_refs: tuple[RefTagMatch, ...]


def container_value_span(text: str, template: TemplateMatch, param: str = "refs") -> tuple[int, int] | None:
    """Absolute span of the ``param=`` value inside a container template."""
    for span in param_spans(template.content):
        if span.name is not None and span.name.lower() == param:
            return template.start + span.value_start, template.start + span.end
    return None


def scan_document(text: str, container_names: list[str] | tuple[str, ...]) -> ScanResult:
    masked = mask_inert_spans(text)
    templates = find_templates(text, container_names, masked=masked)
    references_tags = find_references_tags(text, masked=masked)
    containers = [(t.start, t.end) for t in templates] + [(t.start, t.end) for t in references_tags]

    ldr_refs: list[RefTagMatch] = []
    for tpl in templates:
        span = container_value_span(text, tpl)
        if span is not None:
            ldr_refs.extend(scan_full_refs(text, masked=masked, start=span[0], end=span[1]))
    for tag in references_tags:
        if tag.inner:
            ldr_refs.extend(scan_full_refs(
                text, masked=masked, start=tag.inner_start, end=tag.inner_start + len(tag.inner),
            ))

    return ScanResult(
        templates=tuple(templates),
        references_tags=tuple(references_tags),
        full_refs=tuple(scan_full_refs(text, masked=masked, exclude=containers)),
        self_closing_refs=tuple(scan_self_closing_refs(text, masked=masked, exclude=containers)),
        chains=tuple(find_chained_templates(text, masked=masked, exclude=containers)),
        ldr_refs=tuple(ldr_refs),
    )


# ---------------------------------------------------------------------------
# Name helpers
# ---------------------------------------------------------------------------


def group_key(name: str | None) -> str:
    """Alphabetical bucket of a reference name: ``#``, ``A``-``Z`` or ``*``."""
    if not name:
        return "*"
    first = name.strip()[:1]
    if not first:
        return "*"
    if first.isascii() and first.isdigit():
        return "#"
    if first.isascii() and first.isalpha():
        return first.upper()
    return "*"


def is_auto_generated_name(name: str | None) -> bool:
    """True for missing names and editor-generated ones like ``:0`` or ``ReferenceA``."""
    if not name:
        return True
    trimmed = name.strip()
    return bool(_AUTO_NAME_RE.match(trimmed) or _VE_NAME_RE.match(trimmed))
