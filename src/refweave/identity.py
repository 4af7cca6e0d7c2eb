"""Identity resolution: renames, nameless renames and deduplication."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from refweave.fingerprint import TemplateFingerprint, build_fingerprint, merge_template_params, templates_compatible
from refweave.registry import ReferenceRegistry, normalize_keys, ref_key
from refweave.types import ReferenceRecord


_WS_RE = re.compile(r"\s+")


@dataclass(slots=True)
class RenameOutcome:
    renamed: list[tuple[str, str | None]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def normalize_rename_map(rename: Mapping[str, str | None]) -> dict[str, str | None]:
    """Drop empty keys and identity mappings."""
    return {k: v for k, v in rename.items() if k and v != k}


def apply_renames(
    registry: ReferenceRegistry,
    rename: Mapping[str, str | None],
    rename_nameless: Mapping[str, str | None],
) -> RenameOutcome:
    """Rename records in place and merge any that now share a key.

    ``rename`` maps current names to new names (None strips the name).
    ``rename_nameless`` maps synthetic ids or keys of unnamed records to
    names; entries that match no record are handed out, in order, to the
    remaining unnamed records in document order.
    """
    outcome = RenameOutcome()
    rename = normalize_rename_map(rename)
    matched: set[str] = set()
    applied_nameless: set[str] = set()
    touched_unnamed: set[int] = set()

    for idx, rec in registry.iter_live():
        if rec.name:
            if rec.name not in rename:
                continue
            matched.add(rec.name)
            target = rename[rec.name]
            if target is None:
                outcome.renamed.append((rec.name, None))
                rec.name = None
            elif target != rec.name:
                outcome.renamed.append((rec.name, target))
                rec.name = target
            continue
        for lookup in (rec.id, rec.key):
            if lookup in rename_nameless:
                target = rename_nameless[lookup]
                applied_nameless.update((rec.id, rec.key))
                touched_unnamed.add(idx)
                if target:
                    outcome.renamed.append((rec.id, target))
                    rec.name = target
                    rec.key = ref_key(target, rec.group)
                break

    remaining = [(k, v) for k, v in rename_nameless.items() if k not in applied_nameless]
    if remaining:
        pending = iter(remaining)
        for idx, rec in registry.iter_live():
            if rec.name or idx in touched_unnamed:
                continue
            entry = next(pending, None)
            if entry is None:
                break
            _, target = entry
            if target:
                outcome.renamed.append((rec.id, target))
                rec.name = target
                rec.key = ref_key(target, rec.group)
        leftover = list(pending)
        for key, _ in leftover:
            outcome.warnings.append(f"nameless rename {key!r} matched no unnamed reference")

    for name in rename:
        if name not in matched:
            outcome.warnings.append(f"rename {name!r} matched no reference")

    normalize_keys(registry)
    return outcome


# ---------------------------------------------------------------------------
# Dedupe
# ---------------------------------------------------------------------------


def normalize_content(content: str) -> str:
    return _WS_RE.sub(" ", content).strip()


def _inherit_definitions(target: ReferenceRecord, source: ReferenceRecord) -> None:
    if not target.definitions and source.definitions:
        target.definitions.extend(source.definitions)
    if not target.ldr_definitions and source.ldr_definitions:
        target.ldr_definitions.extend(source.ldr_definitions)


def apply_dedupe(registry: ReferenceRegistry) -> list[tuple[str, str]]:
    """Point records with equivalent content at the first such record.

    Single-template citations are compared structurally; anything else by
    whitespace-collapsed text. Returns ``(from, to)`` name pairs.
    """
    by_content: dict[str, int] = {}
    by_template: dict[str, list[tuple[int, TemplateFingerprint]]] = {}
    changes: list[tuple[str, str]] = []

    for idx, rec in registry.iter_live():
        if rec.canonical is not None or not rec.name:
            continue
        content = rec.first_content()
        if not content:
            continue

        fp = build_fingerprint(content)
        if fp is not None:
            bucket = by_template.setdefault(fp.normalized_name, [])
            match = next(
                ((c_idx, c_fp) for c_idx, c_fp in bucket if templates_compatible(c_fp, fp)),
                None,
            )
            if match is None:
                bucket.append((idx, fp))
                continue
            canonical_idx, canonical_fp = match
            canonical = registry.records[canonical_idx]
            rec.canonical = canonical_idx
            _inherit_definitions(canonical, rec)
            if merge_template_params(canonical_fp, fp):
                canonical.content_override = canonical_fp.content
            changes.append((rec.name, canonical.name or ""))
            continue

        norm = normalize_content(content)
        existing = by_content.get(norm)
        if existing is None:
            by_content[norm] = idx
            continue
        canonical = registry.records[existing]
        rec.canonical = existing
        _inherit_definitions(canonical, rec)
        changes.append((rec.name, canonical.name or ""))

    return changes
