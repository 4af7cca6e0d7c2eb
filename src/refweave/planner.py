"""Rewrite planner: turn a resolved registry into a list of edits."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeAlias

from refweave.chains import render_chained_template
from refweave.edits import apply_edits
from refweave.markup import find_chained_templates, scan_self_closing_refs
from refweave.registry import ReferenceRegistry, ref_key
from refweave.render import (
    LdrEntry,
    NotConvertible,
    RefStyle,
    build_container_template,
    build_references_tag,
    convertible_references_group,
    convertible_template_group,
    normalize_group_value,
    references_tag_group,
    render_ref_self,
    render_ref_tag,
    retarget_name,
    template_group,
    update_container_template,
    update_references_tag,
)
from refweave.types import ChainEntry, ChainedTemplate, ChainedUse, Edit, FullUse, RefUse, ReferenceRecord, SelfClosingUse


@dataclass(frozen=True, slots=True)
class PlanSettings:
    """Rendering policy. ``None`` for a form preference means keep each occurrence's form."""

    keep: bool = True
    prefer_chained: bool | None = None
    prefer_template_container: bool | None = None
    container_template: str = "reflist"
    style: RefStyle = field(default_factory=RefStyle)


@dataclass(slots=True)
class Plan:
    edits: list[Edit] = field(default_factory=list)
    moved_to_inline: list[str] = field(default_factory=list)
    moved_to_ldr: list[str] = field(default_factory=list)


def build_plan(text: str, registry: ReferenceRegistry, settings: PlanSettings) -> Plan:
    plan = Plan()
    plan.edits.extend(_chain_edits(registry, settings))

    carriers = _definition_carriers(registry, settings.keep)
    names = final_names(registry)
    for idx, rec in registry.iter_live():
        plan.edits.extend(_use_edits(text, registry, idx, rec, carriers, names, settings))
    if settings.keep:
        plan.edits.extend(_ldr_definition_edits(text, registry, names, settings))
    else:
        plan.edits.extend(_container_edits(registry, names, settings))

    _record_moves(registry, carriers, plan)
    return plan


# ---------------------------------------------------------------------------
# Uses
# ---------------------------------------------------------------------------


def _definition_carriers(registry: ReferenceRegistry, keep: bool = False) -> dict[int, RefUse]:
    """Use of each canonical that carries its inline definition.

    The first direct (non-chained) use across the merged records. In keep
    mode the first definition with a non-blank body wins, so definitions
    stay where they are.
    """
    carriers: dict[int, RefUse] = {}
    for idx in registry.live():
        canonical_idx = registry.resolve_index(idx)
        for use in registry.records[idx].uses:
            if isinstance(use, ChainedUse):
                continue
            current = carriers.get(canonical_idx)
            if current is None or _carrier_rank(use, keep) < _carrier_rank(current, keep):
                carriers[canonical_idx] = use
    return carriers


def _carrier_rank(use: RefUse, keep: bool) -> tuple[int, int]:
    filled = isinstance(use, FullUse) and bool(use.content.strip())
    return (0 if filled or not keep else 1, use.start)


NameMap: TypeAlias = dict[str, str | None]


def final_names(registry: ReferenceRegistry) -> NameMap:
    """``ref_key`` of every name seen in the document mapped to the name it ends up with."""
    names: NameMap = {}
    for idx, rec in registry.iter_live():
        canonical = registry.resolve(idx)
        final = canonical.name if canonical.name is not None else rec.name
        for occurrence in (*rec.uses, *rec.ldr_definitions):
            if occurrence.name:
                names.setdefault(ref_key(occurrence.name, normalize_group_value(occurrence.group)), final)
    return names


def retarget_nested(content: str, names: NameMap) -> str:
    """Point chains and self-closing refs inside a definition body at their final names."""
    if not names or ("{{" not in content and "<" not in content):
        return content
    edits: list[Edit] = []
    for chain in find_chained_templates(content):

        def resolve(slot: int, entry: ChainEntry, chain: ChainedTemplate = chain) -> str:
            key = ref_key(entry.value, normalize_group_value(chain.group_for(entry.index)))
            return names.get(key) or entry.value

        rendered = render_chained_template(chain, resolve, as_template=True)
        if rendered is not None:
            edits.append(Edit(chain.start, chain.end, rendered))
    for m in scan_self_closing_refs(content):
        final = names.get(ref_key(m.name, normalize_group_value(m.group))) if m.name else None
        if final and final != m.name:
            tag = retarget_name(content[m.start:m.end], final)
            if tag is not None:
                edits.append(Edit(m.start, m.end, tag))
    return apply_edits(content, edits) if edits else content


def _literal_tag(tag_text: str, name: str, body: str, new_body: str) -> str | None:
    """``tag_text`` with its name attribute retargeted and ``body`` swapped for ``new_body``."""
    tag = retarget_name(tag_text, name)
    if tag is None:
        return None
    open_end = tag.find(">") + 1
    if tag[open_end:open_end + len(body)] != body:
        return None
    return tag[:open_end] + new_body + tag[open_end + len(body):]


def _target(registry: ReferenceRegistry, idx: int, rec: ReferenceRecord) -> tuple[ReferenceRecord, str | None, str | None]:
    canonical = registry.records[registry.resolve_index(idx)]
    name = canonical.name if canonical.name is not None else rec.name
    return canonical, name, canonical.group


def _use_edits(
    text: str,
    registry: ReferenceRegistry,
    idx: int,
    rec: ReferenceRecord,
    carriers: dict[int, RefUse],
    names: NameMap,
    settings: PlanSettings,
) -> list[Edit]:
    canonical, target_name, target_group = _target(registry, idx, rec)
    raw = canonical.first_content() or ""
    content = retarget_nested(raw, names)
    carrier = carriers.get(registry.resolve_index(idx))
    normalize = settings.style.normalize
    as_chained = settings.prefer_chained is True

    edits: list[Edit] = []
    for use in rec.uses:
        if isinstance(use, ChainedUse):
            continue
        is_def = isinstance(use, FullUse)
        blank_def = is_def and not use.content.strip()
        same_identity = target_name == use.name and target_group == use.group
        unchanged_body = is_def and raw == use.content
        carries_definition = canonical.target_location == "inline" and use is carrier and bool(content)
        # An empty <ref name=x></ref> acts as a reuse marker.
        acts_as_marker = (not is_def or blank_def) and not carries_definition
        if settings.keep and not normalize and same_identity and (unchanged_body or (acts_as_marker and not as_chained)):
            continue

        keep_literal = settings.keep and not normalize and bool(target_name) and bool(use.name) and target_group == use.group
        if carries_definition:
            rendered = render_ref_tag(target_name, target_group, content, normalize, settings.style.lookup)
            if keep_literal and unchanged_body:
                rendered = _literal_tag(text[use.start:use.end], target_name or "", use.content, content) or rendered
        else:
            rendered = render_ref_self(target_name, target_group, chained=as_chained)
            if keep_literal and isinstance(use, SelfClosingUse) and not as_chained:
                rendered = retarget_name(text[use.start:use.end], target_name or "") or rendered
        edits.append(Edit(use.start, use.end, rendered))
    return edits


def _chain_edits(registry: ReferenceRegistry, settings: PlanSettings) -> list[Edit]:
    owners = registry.chain_slot_owners()
    edits: list[Edit] = []
    for chain in registry.chains:

        def resolve(slot: int, entry: ChainEntry, chain_id: int = chain.id) -> str:
            owner = owners.get((chain_id, slot))
            if owner is None:
                return entry.value
            canonical = registry.resolve(owner)
            return canonical.name or registry.records[owner].name or entry.value

        rendered = render_chained_template(chain, resolve, as_template=settings.prefer_chained is not False)
        if rendered is not None:
            edits.append(Edit(chain.start, chain.end, rendered))
    return edits


# ---------------------------------------------------------------------------
# List-defined references
# ---------------------------------------------------------------------------


def _removal(text: str, definition: FullUse) -> Edit:
    end = definition.end
    if text.startswith("\n", end):
        end += 1
    return Edit(definition.start, end, "")


def _ldr_definition_edits(
    text: str,
    registry: ReferenceRegistry,
    names: NameMap,
    settings: PlanSettings,
) -> list[Edit]:
    """Keep mode: rewrite container entries in place when their identity or body changed."""
    normalize = settings.style.normalize
    edits: list[Edit] = []
    for canonical in registry.canonical_records():
        canonical_idx = registry.index_of(canonical)
        seen: set[tuple[int, int]] = set()
        definitions: list[tuple[ReferenceRecord, FullUse]] = []
        for rec in registry.merged_into(canonical_idx):
            for d in rec.ldr_definitions:
                if (d.start, d.end) not in seen:
                    seen.add((d.start, d.end))
                    definitions.append((rec, d))
        definitions.sort(key=lambda pair: pair[1].start)

        for position, (rec, d) in enumerate(definitions):
            target_name = canonical.name if canonical.name is not None else rec.name
            target_group = d.group if d.group is not None else canonical.group
            renamed = target_name != d.name or target_group != d.group
            if position > 0 and renamed:
                # Another entry already defines this reference.
                edits.append(_removal(text, d))
                continue
            override = canonical.content_override
            body = retarget_nested(d.content, names)
            if not normalize and not renamed and override is None and body == d.content:
                continue
            content = override if override is not None else body
            if not content:
                edits.append(Edit(d.start, d.end, render_ref_self(target_name, target_group)))
                continue
            rendered = render_ref_tag(target_name, target_group, content, normalize, settings.style.lookup)
            if not normalize and override is None and target_name and d.name and target_group == d.group:
                rendered = _literal_tag(text[d.start:d.end], target_name, d.content, body) or rendered
            edits.append(Edit(d.start, d.end, rendered))
    return edits


def _ldr_entries(registry: ReferenceRegistry, names: NameMap) -> list[LdrEntry]:
    entries: list[LdrEntry] = []
    for canonical in registry.canonical_records():
        if canonical.target_location != "ldr" or not canonical.name:
            continue
        content = canonical.first_content()
        if content:
            entries.append(LdrEntry(
                canonical.name, normalize_group_value(canonical.group), retarget_nested(content, names),
            ))
    return entries


def _container_edits(registry: ReferenceRegistry, names: NameMap, settings: PlanSettings) -> list[Edit]:
    """Rebuild every container for its group and append containers for missing groups."""
    style = settings.style
    by_group: dict[str | None, list[LdrEntry]] = {}
    for entry in _ldr_entries(registry, names):
        by_group.setdefault(entry.group, []).append(entry)

    filled: set[str | None] = set()

    def take(group: str | None) -> list[LdrEntry]:
        if group in filled:
            return []
        filled.add(group)
        return by_group.get(group, [])

    edits: list[Edit] = []
    grouped_tags = any(references_tag_group(tag) for tag in registry.references_tags)
    containers = sorted(
        [(t.start, "template", t) for t in registry.templates]
        + [(t.start, "tag", t) for t in registry.references_tags],
        key=lambda item: item[0],
    )
    for _, kind, match in containers:
        if kind == "template":
            group = normalize_group_value(template_group(match.params))
            updated = update_container_template(match, take(group), style)
            if settings.prefer_template_container is False:
                try:
                    tag_group = convertible_template_group(match.params)
                except NotConvertible:
                    pass
                else:
                    filled.discard(group)
                    updated = build_references_tag(take(tag_group), tag_group, style=style)
        else:
            group = references_tag_group(match)
            updated = update_references_tag(match, take(group), style)
            if settings.prefer_template_container is True and not grouped_tags:
                try:
                    tpl_group = convertible_references_group(match.attrs)
                except NotConvertible:
                    pass
                else:
                    filled.discard(group)
                    updated = build_container_template(
                        take(tpl_group), tpl_group, settings.container_template, style,
                    )
        if updated != match.content:
            edits.append(Edit(match.start, match.end, updated))

    missing = [group for group in by_group if group not in filled]
    if missing:
        use_template = settings.prefer_template_container is not False and not registry.references_tags
        appended = [
            build_container_template(by_group[group], group, settings.container_template, style)
            if use_template
            else build_references_tag(by_group[group], group, style=style)
            for group in missing
        ]
        edits.append(Edit.append("".join(f"\n{block}" for block in appended)))
    return edits


# ---------------------------------------------------------------------------
# Change summary
# ---------------------------------------------------------------------------


def _record_moves(registry: ReferenceRegistry, carriers: dict[int, RefUse], plan: Plan) -> None:
    for canonical in registry.canonical_records():
        if not canonical.name:
            continue
        canonical_idx = registry.index_of(canonical)
        merged = registry.merged_into(canonical_idx)
        has_inline = any(isinstance(u, FullUse) for rec in merged for u in rec.uses)
        has_ldr = any(rec.ldr_definitions for rec in merged)
        if canonical.target_location == "ldr" and has_inline:
            plan.moved_to_ldr.append(canonical.name)
        elif canonical.target_location == "inline" and has_ldr and not has_inline and canonical_idx in carriers:
            plan.moved_to_inline.append(canonical.name)
