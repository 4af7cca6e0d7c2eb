"""Rewrite entry point: options, orchestration and change summary.

Typical use::

    from refweave.rewrite import RewriteOptions, rewrite

    options = RewriteOptions.from_dict({"rename": {"foo": "bar"}, "locationMode": "all_ldr"})
    result = rewrite(document, options)
    result.text, result.changes.renamed
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from refweave.chains import plan_chain_collapse
from refweave.edits import apply_edits
from refweave.identity import apply_dedupe, apply_renames
from refweave.markup import group_key, sanitize_markup
from refweave.placement import LocationMode, MinUses, assign_locations
from refweave.planner import PlanSettings, build_plan
from refweave.registry import ReferenceRegistry, build_registry
from refweave.render import RefStyle
from refweave.string_utils import alpha_index, natural_sort_key
from refweave.templatedata import EMPTY_LOOKUP, TemplateDataLookup


DEFAULT_CONTAINER_TEMPLATES: tuple[str, ...] = ("reflist", "references")

_FIXED_MODES = ("keep", "all_inline", "all_ldr")

# dict key -> field name; camelCase and the legacy option names are accepted.
_OPTION_KEYS: dict[str, str] = {
    "rename": "rename",
    "renameMap": "rename",
    "rename_map": "rename",
    "rename_nameless": "rename_nameless",
    "renameNameless": "rename_nameless",
    "dedupe": "dedupe",
    "location_mode": "location_mode",
    "locationMode": "location_mode",
    "sort_refs": "sort_refs",
    "sortRefs": "sort_refs",
    "prefer_chained_template": "prefer_chained_template",
    "preferChainedTemplate": "prefer_chained_template",
    "preferTemplateR": "prefer_chained_template",
    "prefer_template_container": "prefer_template_container",
    "preferTemplateContainer": "prefer_template_container",
    "preferTemplateReflist": "prefer_template_container",
    "container_templates": "container_templates",
    "containerTemplates": "container_templates",
    "reflistTemplates": "container_templates",
    "normalize_content": "normalize_content",
    "normalizeContent": "normalize_content",
    "normalizeAll": "normalize_content",
    "content_overrides": "content_overrides",
    "contentOverrides": "content_overrides",
}

_MIN_USES_KEYS = ("minUses", "min_uses", "minUsesForLdr")


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def _rename_map(value: Any, label: str) -> dict[str, str | None]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be an object")
    out: dict[str, str | None] = {}
    for key, target in value.items():
        if not isinstance(key, str):
            raise ValueError(f"{label} keys must be strings")
        if target is not None and not isinstance(target, str):
            raise ValueError(f"{label}[{key!r}] must be a string or null")
        if isinstance(target, str) and not target.strip():
            raise ValueError(f"{label}[{key!r}] must not be empty")
        out[key] = target.strip() if isinstance(target, str) else None
    return out


def parse_location_mode(value: Any) -> LocationMode:
    """``"keep" | "all_inline" | "all_ldr"`` or ``{"minUses": n}``."""
    if value is None:
        return "keep"
    if isinstance(value, MinUses):
        return value
    if isinstance(value, str):
        mode = value.strip().lower().replace("-", "_")
        if mode not in _FIXED_MODES:
            raise ValueError(f"unknown location mode {value!r}")
        return mode  # type: ignore[return-value]
    if isinstance(value, Mapping):
        for key in _MIN_USES_KEYS:
            if key in value:
                count = value[key]
                if isinstance(count, bool) or not isinstance(count, int):
                    raise ValueError(f"location mode {key} must be an integer")
                return MinUses(count)
    raise ValueError(f"unknown location mode {value!r}")


def _flag(value: Any, label: str, *, optional: bool = False) -> bool | None:
    if value is None and optional:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"{label} must be a boolean")
    return value


@dataclass(frozen=True, slots=True)
class RewriteOptions:
    """Rewrite policy.

    ``prefer_chained_template`` and ``prefer_template_container`` are
    tri-state: None keeps every occurrence in the form it already has.
    """

    rename: Mapping[str, str | None] = field(default_factory=dict)
    rename_nameless: Mapping[str, str | None] = field(default_factory=dict)
    dedupe: bool = False
    location_mode: LocationMode = "keep"
    sort_refs: bool = False
    prefer_chained_template: bool | None = None
    prefer_template_container: bool | None = None
    container_templates: tuple[str, ...] = DEFAULT_CONTAINER_TEMPLATES
    normalize_content: bool = False
    content_overrides: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RewriteOptions:
        """Build options from camelCase or snake_case keys; raise ValueError on bad values."""
        values: dict[str, Any] = {}
        for key, value in data.items():
            field_name = _OPTION_KEYS.get(key)
            if field_name is None:
                raise ValueError(f"unknown option {key!r}")
            values[field_name] = value

        kwargs: dict[str, Any] = {}
        if "rename" in values:
            kwargs["rename"] = _rename_map(values["rename"], "rename")
        if "rename_nameless" in values:
            kwargs["rename_nameless"] = _rename_map(values["rename_nameless"], "rename_nameless")
        if "location_mode" in values:
            kwargs["location_mode"] = parse_location_mode(values["location_mode"])
        for name in ("dedupe", "sort_refs", "normalize_content"):
            if name in values:
                kwargs[name] = _flag(values[name], name)
        for name in ("prefer_chained_template", "prefer_template_container"):
            if name in values:
                kwargs[name] = _flag(values[name], name, optional=True)
        if "container_templates" in values:
            names = values["container_templates"] or []
            if isinstance(names, str) or not all(isinstance(n, str) for n in names):
                raise ValueError("container_templates must be a list of strings")
            kwargs["container_templates"] = tuple(n.strip() for n in names if n.strip())
        if "content_overrides" in values:
            overrides = values["content_overrides"] or {}
            if not isinstance(overrides, Mapping) or not all(isinstance(v, str) for v in overrides.values()):
                raise ValueError("content_overrides must map ids to strings")
            kwargs["content_overrides"] = dict(overrides)
        return cls(**kwargs)

    @property
    def container_names(self) -> tuple[str, ...]:
        names = self.container_templates or DEFAULT_CONTAINER_TEMPLATES
        return tuple(n.lower() for n in names)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RewriteChanges:
    renamed: list[tuple[str, str | None]] = field(default_factory=list)
    deduped: list[tuple[str, str]] = field(default_factory=list)
    moved_to_inline: list[str] = field(default_factory=list)
    moved_to_ldr: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "renamed": [{"from": a, "to": b} for a, b in self.renamed],
            "deduped": [{"from": a, "to": b} for a, b in self.deduped],
            "moved_to_inline": list(self.moved_to_inline),
            "moved_to_ldr": list(self.moved_to_ldr),
        }


@dataclass(slots=True)
class RewriteResult:
    text: str
    changes: RewriteChanges = field(default_factory=RewriteChanges)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "changes": self.changes.to_dict(), "warnings": list(self.warnings)}


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def _apply_content_overrides(registry: ReferenceRegistry, overrides: Mapping[str, str]) -> list[str]:
    matched: set[str] = set()
    for _, rec in registry.iter_live():
        for key in (rec.id, rec.key):
            if key in overrides:
                rec.content_override = overrides[key]
                matched.add(key)
                break
    return [f"content override {key!r} matched no reference" for key in overrides if key not in matched]


def rewrite(
    document: str,
    options: RewriteOptions | None = None,
    template_data: TemplateDataLookup | None = None,
) -> RewriteResult:
    """Rename, deduplicate, relocate and reformat the references of ``document``.

    Only the spans that change are rewritten; everything else, comments
    included, comes back byte for byte.
    """
    options = options or RewriteOptions()
    lookup = template_data or EMPTY_LOOKUP

    registry = build_registry(document, options.container_names)
    outcome = apply_renames(registry, options.rename, options.rename_nameless)
    warnings = list(outcome.warnings)
    warnings.extend(_apply_content_overrides(registry, options.content_overrides))
    deduped = apply_dedupe(registry) if options.dedupe else []
    assign_locations(registry, options.location_mode)

    settings = PlanSettings(
        keep=options.location_mode == "keep",
        prefer_chained=options.prefer_chained_template,
        prefer_template_container=options.prefer_template_container,
        container_template=(options.container_templates or DEFAULT_CONTAINER_TEMPLATES)[0],
        style=RefStyle(sort=options.sort_refs, normalize=options.normalize_content, lookup=lookup),
    )
    plan = build_plan(document, registry, settings)
    text = apply_edits(document, plan.edits)
    if options.prefer_chained_template is True:
        text = apply_edits(text, plan_chain_collapse(text))

    changes = RewriteChanges(
        renamed=outcome.renamed,
        deduped=deduped,
        moved_to_inline=plan.moved_to_inline,
        moved_to_ldr=plan.moved_to_ldr,
    )
    return RewriteResult(text=text, changes=changes, warnings=warnings)


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


def get_ref_content_map(
    document: str,
    container_names: tuple[str, ...] | list[str] | None = None,
) -> dict[str, str]:
    """Name and id of every reference mapped to its first content, LDR entries included."""
    names = tuple(n.lower() for n in (container_names or DEFAULT_CONTAINER_TEMPLATES))
    registry = build_registry(document, names)
    out: dict[str, str] = {}
    for _, rec in registry.iter_live():
        content = rec.first_content()
        if not content:
            continue
        if rec.name:
            out[rec.name] = content
        out[rec.id] = content
    return out


@dataclass(frozen=True, slots=True)
class ReferenceSummary:
    id: str
    name: str | None
    group: str | None
    content: str
    use_count: int
    bucket: str = "*"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "group": self.group,
            "content": self.content,
            "use_count": self.use_count,
            "bucket": self.bucket,
        }


def list_references(
    document: str,
    container_names: tuple[str, ...] | list[str] | None = None,
    *,
    by_bucket: bool = False,
) -> list[ReferenceSummary]:
    """References of ``document`` with use counts.

    Ordered by first appearance, or with ``by_bucket`` by alphabetical bucket
    (``#``, ``A``-``Z``, ``*``) and then by name.
    """
    names = tuple(n.lower() for n in (container_names or DEFAULT_CONTAINER_TEMPLATES))
    registry = build_registry(sanitize_markup(document), names)
    refs = [
        ReferenceSummary(
            id=rec.id,
            name=rec.name,
            group=rec.group,
            content=(rec.first_content() or "").strip(),
            use_count=len(rec.uses),
            bucket=group_key(rec.name),
        )
        for _, rec in registry.iter_live()
    ]
    if by_bucket:
        refs.sort(key=lambda ref: (alpha_index(ref.bucket), natural_sort_key(ref.name or ref.id)))
    return refs
