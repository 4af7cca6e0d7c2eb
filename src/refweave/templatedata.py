"""Template parameter order and alias lookup for citation normalization.

The lookup is an already-populated, immutable mapping: fetching TemplateData
from a wiki is the caller's job. ``cite_templates_in`` lists the names worth
prefetching for a document.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from refweave.io_utils import load_json


_CITE_NAME_RE = re.compile(r"\{\{\s*([Cc]ite\s+[^|}\n\r]+?)\s*\|")


def normalize_template_key(name: str) -> str:
    return name.replace("_", " ").strip().lower()


def _normalize_order(order: Iterable[Any]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in order:
        if not isinstance(item, str):
            continue
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(key)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class TemplateInfo:
    """Canonical parameter order and ``alias -> canonical name`` map of one template."""

    param_order: tuple[str, ...] = ()
    aliases: Mapping[str, str] = field(default_factory=dict)


def parse_templatedata_page(page: Mapping[str, Any]) -> TemplateInfo:
    """Read one page object of a ``action=templatedata`` API response."""
    params = page.get("params")
    params = params if isinstance(params, Mapping) else {}
    order_raw = page.get("paramorder") or page.get("paramOrder") or list(params)
    aliases: dict[str, str] = {}
    for param_name, info in params.items():
        if not isinstance(info, Mapping):
            continue
        for alias in info.get("aliases") or ():
            if isinstance(alias, str) and alias.strip():
                aliases[alias.strip().lower()] = param_name.strip().lower()
    return TemplateInfo(param_order=_normalize_order(order_raw), aliases=aliases)


@dataclass(frozen=True, slots=True)
class TemplateDataLookup:
    """Read-only ``template name -> TemplateInfo`` lookup."""

    templates: Mapping[str, TemplateInfo] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized = {normalize_template_key(k): v for k, v in self.templates.items()}
        object.__setattr__(self, "templates", MappingProxyType(normalized))

    def info(self, name: str) -> TemplateInfo:
        return self.templates.get(normalize_template_key(name), TemplateInfo())

    def param_order(self, name: str) -> tuple[str, ...]:
        return self.info(name).param_order

    def alias_map(self, name: str) -> Mapping[str, str]:
        return self.info(name).aliases

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_template_key(name) in self.templates

    def __len__(self) -> int:
        return len(self.templates)

    # -- constructors -----------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TemplateDataLookup:
        """Build from ``{name: [order...]}`` or ``{name: {"order": [...], "aliases": {...}}}``."""
        templates: dict[str, TemplateInfo] = {}
        for name, value in data.items():
            if isinstance(value, Mapping):
                order = value.get("order") or value.get("param_order") or value.get("paramOrder") or ()
                aliases_raw = value.get("aliases") or {}
                if not isinstance(aliases_raw, Mapping):
                    raise ValueError(f"aliases for template {name!r} must be an object")
                aliases = {str(k).strip().lower(): str(v).strip().lower() for k, v in aliases_raw.items()}
            elif isinstance(value, (list, tuple)):
                order, aliases = value, {}
            else:
                raise ValueError(f"template data for {name!r} must be a list or an object")
            templates[name] = TemplateInfo(param_order=_normalize_order(order), aliases=aliases)
        return cls(templates)

    @classmethod
    def from_templatedata_response(cls, payload: Mapping[str, Any], name: str | None = None) -> TemplateDataLookup:
        """Build from a MediaWiki ``action=templatedata`` response.

        Pages are keyed by their title with the ``Template:`` prefix removed,
        unless ``name`` is given, in which case the first page carrying an
        order is stored under it.
        """
        pages = payload.get("pages") or {}
        page_list = list(pages.values()) if isinstance(pages, Mapping) else list(pages)
        templates: dict[str, TemplateInfo] = {}
        for page in page_list:
            if not isinstance(page, Mapping):
                continue
            info = parse_templatedata_page(page)
            if not info.param_order:
                continue
            if name is not None:
                templates[name] = info
                break
            title = str(page.get("title") or "")
            key = title.split(":", 1)[1] if ":" in title else title
            if key:
                templates[key] = info
        return cls(templates)

    @classmethod
    def from_json_file(cls, path: Path) -> TemplateDataLookup:
        payload = load_json(path)
        if not isinstance(payload, Mapping):
            raise ValueError(f"{path}: template data must be a JSON object")
        if "pages" in payload:
            return cls.from_templatedata_response(payload)
        return cls.from_mapping(payload)

    def merged(self, other: TemplateDataLookup) -> TemplateDataLookup:
        return TemplateDataLookup({**self.templates, **other.templates})


def cite_templates_in(text: str) -> list[str]:
    """Distinct lower-cased ``cite ...`` template names, in order of appearance."""
    names: list[str] = []
    for m in _CITE_NAME_RE.finditer(text):
        name = m.group(1).strip().lower()
        if name and name not in names:
            names.append(name)
    return names


EMPTY_LOOKUP = TemplateDataLookup()
