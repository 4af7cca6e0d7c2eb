"""Rendering of reference tags, markers, container templates and citation bodies."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from refweave.markup import extract_attr, match_braces, parse_template_params
from refweave.string_utils import escape_attr, natural_sort_key, normalize_date_param_value
from refweave.templatedata import EMPTY_LOOKUP, TemplateDataLookup
from refweave.types import ReferencesTagMatch, TemplateMatch, TemplateParam


_TRAILING_LINE_SPACE_RE = re.compile(r"[ \t]+\n")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_CITE_START_RE = re.compile(r"\{\{\s*([Cc]ite\s+[^|}]+?)\s*\|")
_NAME_ATTR_RE = re.compile(r"(?<![\w-])(name\s*=\s*)(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'/>]+))", re.IGNORECASE)
_GROUP_ONLY_ATTRS_RE = re.compile(r"^\s*group\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s/>]+))\s*$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class LdrEntry:
    """A list-defined reference to be written into a container."""

    name: str
    group: str | None
    content: str


# ---------------------------------------------------------------------------
# Reference tags
# ---------------------------------------------------------------------------


def normalize_content_block(content: str) -> str:
    """Drop line-trailing spaces, collapse runs of blank lines, trim."""
    text = _TRAILING_LINE_SPACE_RE.sub("\n", content or "")
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def render_ref_self(name: str | None, group: str | None, chained: bool = False) -> str:
    """A reuse marker: ``<ref name="x" />`` or ``{{r|x}}`` when ``chained``."""
    if not name:
        return "<ref />"
    if chained:
        parts = [name]
        if group:
            parts.append(f"group={escape_attr(group)}")
        return "{{r|" + "|".join(parts) + "}}"
    attrs = [f'name="{escape_attr(name)}"']
    if group:
        attrs.append(f'group="{escape_attr(group)}"')
    return f"<ref {' '.join(attrs)} />"


def render_ref_tag(
    name: str | None,
    group: str | None,
    content: str,
    normalize: bool = False,
    lookup: TemplateDataLookup | None = None,
) -> str:
    attrs: list[str] = []
    if name:
        attrs.append(f'name="{escape_attr(name)}"')
    if group:
        attrs.append(f'group="{escape_attr(group)}"')
    inner = normalize_ref_body(content, lookup) if normalize else normalize_content_block(content)
    opening = f"<ref {' '.join(attrs)}>" if attrs else "<ref>"
    return f"{opening}{inner}</ref>"


def retarget_name(tag_text: str, new_name: str) -> str | None:
    """Replace the ``name`` attribute value of a ``<ref>`` opening tag in place.

    The original quoting is kept when it can hold the new value. Returns
    None when the tag has no name attribute.
    """
    close = tag_text.find(">")
    opening = tag_text[:close] if close != -1 else tag_text
    m = _NAME_ATTR_RE.search(opening)
    if not m:
        return None
    if m.group(2) is not None and '"' not in new_name:
        value = f'"{new_name}"'
    elif m.group(3) is not None and "'" not in new_name:
        value = f"'{new_name}'"
    elif m.group(4) is not None and re.fullmatch(r"[^\s\"'/>=]+", new_name):
        value = new_name
    else:
        value = f'"{escape_attr(new_name)}"'
    return f"{tag_text[:m.start()]}{m.group(1)}{value}{tag_text[m.end():]}"


def format_copy(name: str, fmt: Literal["raw", "r", "ref"]) -> str:
    """Text to paste for reusing ``name`` in the given notation."""
    if fmt == "r":
        return "{{r|" + name + "}}"
    if fmt == "ref":
        return f'<ref name="{escape_attr(name)}" />'
    return name


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _param_texts(params: Sequence[TemplateParam]) -> list[str]:
    out: list[str] = []
    positional = 0
    for param in params:
        name = (param.name or "").strip()
        if not name or (name == str(positional + 1) and "=" not in param.value):
            positional += 1
            out.append(param.value)
        else:
            out.append(f"{name}={param.value}")
    return out


def render_template(name: str, params: Sequence[TemplateParam]) -> str:
    parts = _param_texts(params)
    return "{{" + name + ("|" + "|".join(parts) if parts else "") + "}}"


def _ordered_cite_params(name: str, params: list[TemplateParam], lookup: TemplateDataLookup) -> list[TemplateParam]:
    aliases = lookup.alias_map(name)

    def canonical(param_name: str | None) -> str | None:
        if not param_name:
            return None
        norm = param_name.strip().lower()
        return aliases.get(norm, norm)

    ordered: list[TemplateParam] = []
    used: set[int] = set()
    for key in lookup.param_order(name):
        target = canonical(key)
        for idx, param in enumerate(params):
            if idx not in used and canonical(param.name) == target:
                ordered.append(param)
                used.add(idx)
                break
    ordered.extend(param for idx, param in enumerate(params) if idx not in used)
    return ordered


def _normalize_cite(template_text: str, name: str, lookup: TemplateDataLookup) -> str:
    params = parse_template_params(template_text)
    if not params:
        return template_text
    normalized: list[TemplateParam] = []
    for param in _ordered_cite_params(name, params, lookup):
        value = param.value.strip()
        pname = (param.name or "").strip()
        if pname and not pname.isdigit():
            value = normalize_date_param_value(pname, value)
        normalized.append(TemplateParam(name=pname or None, value=value))
    parts = _param_texts(normalized)
    return "{{" + name.strip() + (" |" + " |".join(parts) if parts else "") + "}}"


def normalize_ref_body(content: str, lookup: TemplateDataLookup | None = None) -> str:
    """Normalize a reference body and every cite template in it.

    Parameters are reordered by the template's canonical order (aliases
    resolved through ``lookup``), unknown ones follow in their original
    order, and date parameters are rewritten to ISO-8601 where they parse.
    """
    lookup = lookup or EMPTY_LOOKUP
    text = normalize_content_block(content)
    out: list[str] = []
    cursor = 0
    i = 0
    while True:
        idx = text.find("{{", i)
        if idx == -1:
            break
        m = _CITE_START_RE.match(text, idx)
        end = match_braces(text, idx) if m else -1
        if not m or end == -1:
            i = idx + 2
            continue
        out.append(text[cursor:idx])
        out.append(_normalize_cite(text[idx:end], m.group(1), lookup))
        cursor = i = end
    out.append(text[cursor:])
    return "".join(out)


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


def normalize_group_value(group: str | None) -> str | None:
    if not group:
        return None
    return group.strip() or None


def template_group(params: Sequence[TemplateParam]) -> str | None:
    for param in params:
        if param.name and param.name.strip().lower() == "group":
            return param.value.strip() or None
    return None


def references_tag_group(tag: ReferencesTagMatch) -> str | None:
    return normalize_group_value(extract_attr(tag.attrs, "group"))


class NotConvertible(Exception):
    """Container carries options that the other container form cannot express."""


def convertible_template_group(params: Sequence[TemplateParam]) -> str | None:
    """Group of a container template holding only ``refs``/``group``.

    Raises NotConvertible for any other parameter or a repeated one.
    """
    group: str | None = None
    seen: set[str] = set()
    for param in params:
        key = (param.name or "").strip().lower()
        if key not in ("refs", "group") or key in seen:
            raise NotConvertible(key)
        seen.add(key)
        if key == "group":
            group = param.value.strip() or None
    return group


def convertible_references_group(attrs: str) -> str | None:
    """Group of a ``<references>`` tag whose only attribute is ``group``."""
    trimmed = (attrs or "").strip()
    if not trimmed:
        return None
    m = _GROUP_ONLY_ATTRS_RE.match(trimmed)
    if not m:
        raise NotConvertible(trimmed)
    value = next((g for g in m.groups() if g is not None), "")
    return value.strip() or None


@dataclass(frozen=True, slots=True)
class RefStyle:
    """How container entries are written: order and body normalization."""

    sort: bool = False
    normalize: bool = False
    lookup: TemplateDataLookup | None = None


def render_refs_value(entries: Sequence[LdrEntry], style: RefStyle | None = None) -> str:
    style = style or RefStyle()
    ordered = sorted(entries, key=lambda e: natural_sort_key(e.name)) if style.sort else list(entries)
    rendered = [render_ref_tag(e.name, e.group, e.content, style.normalize, style.lookup) for e in ordered]
    return "\n" + "\n".join(rendered) + "\n"


def build_references_tag(
    entries: Sequence[LdrEntry],
    group: str | None,
    attrs: str | None = None,
    style: RefStyle | None = None,
) -> str:
    if attrs is None:
        attrs = f'group="{escape_attr(group)}"' if group else ""
    attr_text = f" {attrs}" if attrs else ""
    if not entries:
        return f"<references{attr_text} />"
    return f"<references{attr_text}>{render_refs_value(entries, style)}</references>"


def build_container_template(
    entries: Sequence[LdrEntry],
    group: str | None,
    name: str = "reflist",
    style: RefStyle | None = None,
) -> str:
    params: list[TemplateParam] = []
    if group:
        params.append(TemplateParam("group", group))
    if entries:
        params.append(TemplateParam("refs", render_refs_value(entries, style)))
    return render_template(name, params)


def update_container_template(
    template: TemplateMatch,
    entries: Sequence[LdrEntry],
    style: RefStyle | None = None,
) -> str:
    """Rewrite the ``refs`` parameter of an existing container template."""
    params = [p for p in template.params if not (p.name and p.name.lower() == "refs")]
    if entries:
        refs_value = render_refs_value(entries, style)
        has_refs = len(params) != len(template.params)
        if has_refs:
            params = [
                TemplateParam(p.name, refs_value) if p.name and p.name.lower() == "refs" else p
                for p in template.params
            ]
        else:
            params.append(TemplateParam("refs", refs_value))
    return render_template(template.name, params)


def update_references_tag(
    tag: ReferencesTagMatch,
    entries: Sequence[LdrEntry],
    style: RefStyle | None = None,
) -> str:
    return build_references_tag(entries, None, attrs=tag.attrs, style=style)
