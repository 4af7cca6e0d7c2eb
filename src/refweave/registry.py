"""Reference registry: an arena of records addressed by index.

Records are never removed from the arena. Merging points a record's
``canonical`` at its survivor and drops it from the key map; ``resolve``
follows those pointers to the root on every read.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from refweave.markup import ScanResult, scan_document
from refweave.types import (
    ChainedTemplate,
    ChainedUse,
    FullUse,
    ReferenceRecord,
    ReferencesTagMatch,
    SelfClosingUse,
    TemplateMatch,
)


NAMELESS_PREFIX = "__nameless_"


def ref_key(name: str | None, group: str | None) -> str:
    return f"{group or ''}::{name or ''}"


@dataclass(slots=True)
class ReferenceRegistry:
    records: list[ReferenceRecord] = field(default_factory=list)
    by_key: dict[str, int] = field(default_factory=dict)
    templates: tuple[TemplateMatch, ...] = ()
    references_tags: tuple[ReferencesTagMatch, ...] = ()
    chains: tuple[ChainedTemplate, ...] = ()
    nameless_count: int = 0

    # -- arena ------------------------------------------------------------

    def resolve_index(self, index: int) -> int:
        seen: set[int] = set()
        while True:
            parent = self.records[index].canonical
            if parent is None or parent == index or index in seen:
                return index
            seen.add(index)
            index = parent

    def resolve(self, record: ReferenceRecord | int) -> ReferenceRecord:
        index = record if isinstance(record, int) else self.index_of(record)
        return self.records[self.resolve_index(index)]

    def index_of(self, record: ReferenceRecord) -> int:
        for idx, candidate in enumerate(self.records):
            if candidate is record:
                return idx
        raise KeyError(record.key)

    def get_or_create(self, name: str | None, group: str | None) -> int:
        if name:
            key = ref_key(name, group)
        else:
            key = f"{NAMELESS_PREFIX}{self.nameless_count}"
            self.nameless_count += 1
        existing = self.by_key.get(key)
        if existing is not None:
            return existing
        self.records.append(ReferenceRecord(id=key, name=name, group=group, key=key))
        self.by_key[key] = len(self.records) - 1
        return self.by_key[key]

    def get(self, key: str) -> ReferenceRecord | None:
        idx = self.by_key.get(key)
        return self.records[idx] if idx is not None else None

    # -- iteration --------------------------------------------------------

    def live(self) -> list[int]:
        """Indices still in the key map, in document order of first occurrence."""
        return sorted(self.by_key.values(), key=lambda idx: self.records[idx].first_position)

    def iter_live(self) -> Iterator[tuple[int, ReferenceRecord]]:
        for idx in self.live():
            yield idx, self.records[idx]

    def canonical_records(self) -> list[ReferenceRecord]:
        return [rec for idx, rec in self.iter_live() if self.resolve_index(idx) == idx]

    def merged_into(self, canonical_idx: int) -> list[ReferenceRecord]:
        """Live records (the canonical included) that resolve to ``canonical_idx``."""
        return [rec for idx, rec in self.iter_live() if self.resolve_index(idx) == canonical_idx]

    def chain_slot_owners(self) -> dict[tuple[int, int], int]:
        """``(chain_id, slot) -> record index`` for every chained-template name slot."""
        owners: dict[tuple[int, int], int] = {}
        for idx, rec in self.iter_live():
            for use in rec.uses:
                if isinstance(use, ChainedUse):
                    owners[(use.chain_id, use.slot)] = idx
        return owners


def _populate(registry: ReferenceRegistry, scan: ScanResult) -> None:
    for m in scan.full_refs:
        rec = registry.records[registry.get_or_create(m.name, m.group)]
        use = FullUse(name=m.name, group=m.group, start=m.start, end=m.end, content=m.content or "")
        rec.definitions.append(use)
        rec.uses.append(use)

    for m in scan.self_closing_refs:
        rec = registry.records[registry.get_or_create(m.name, m.group)]
        rec.uses.append(SelfClosingUse(name=m.name, group=m.group, start=m.start, end=m.end))

    for chain in scan.chains:
        for slot, entry in enumerate(chain.entries):
            if not entry.is_name:
                continue
            group = chain.group_for(entry.index)
            rec = registry.records[registry.get_or_create(entry.value, group)]
            rec.uses.append(ChainedUse(
                name=entry.value, group=group, start=chain.start, end=chain.end,
                chain_id=chain.id, slot=slot,
            ))

    for m in scan.ldr_refs:
        rec = registry.records[registry.get_or_create(m.name, m.group)]
        rec.ldr_definitions.append(FullUse(
            name=m.name, group=m.group, start=m.start, end=m.end, content=m.content or "",
        ))

    for rec in registry.records:
        rec.uses.sort(key=lambda u: u.start)
        rec.definitions.sort(key=lambda u: u.start)
        rec.ldr_definitions.sort(key=lambda u: u.start)


def build_registry(text: str, container_names: list[str] | tuple[str, ...]) -> ReferenceRegistry:
    """Scan ``text`` and group every occurrence into reference records."""
    scan = scan_document(text, container_names)
    registry = ReferenceRegistry(
        templates=scan.templates,
        references_tags=scan.references_tags,
        chains=scan.chains,
    )
    _populate(registry, scan)
    return registry


def _recomputed_key(rec: ReferenceRecord) -> str:
    if rec.name:
        return ref_key(rec.name, rec.group)
    if rec.key.startswith(NAMELESS_PREFIX):
        return rec.key
    return f"{NAMELESS_PREFIX}{rec.id}"


def normalize_keys(registry: ReferenceRegistry) -> None:
    """Recompute keys after renames; records whose keys collide are merged.

    The first record (in key-map order) keeps the key and absorbs the
    others' occurrences; losers point ``canonical`` at it.
    """
    rebuilt: dict[str, int] = {}
    for idx in list(registry.by_key.values()):
        rec = registry.records[idx]
        key = _recomputed_key(rec)
        survivor_idx = rebuilt.get(key)
        if survivor_idx is None:
            rec.key = key
            rebuilt[key] = idx
            continue
        survivor = registry.records[survivor_idx]
        survivor.absorb(rec)
        if survivor.content_override is None:
            survivor.content_override = rec.content_override
        rec.canonical = survivor_idx
    registry.by_key = rebuilt
