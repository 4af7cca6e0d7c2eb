"""Decide, per canonical reference, whether its definition lives inline or in a container."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, TypeAlias

from refweave.registry import ReferenceRegistry
from refweave.types import ChainedUse, RefUse


FixedMode: TypeAlias = Literal["keep", "all_inline", "all_ldr"]


@dataclass(frozen=True, slots=True)
class MinUses:
    """Threshold mode: references used at least ``count`` times go to a container."""

    count: int = 2

    def __post_init__(self) -> None:
        if self.count < 1:
            object.__setattr__(self, "count", 2)


LocationMode: TypeAlias = FixedMode | MinUses


def aggregate_uses(registry: ReferenceRegistry, canonical_idx: int) -> list[RefUse]:
    """Every use of every record resolving to ``canonical_idx``, by position."""
    collected: list[RefUse] = []
    for rec in registry.merged_into(canonical_idx):
        collected.extend(rec.uses)
    collected.sort(key=lambda use: use.start)
    return collected


def assign_locations(registry: ReferenceRegistry, mode: LocationMode) -> None:
    for idx in registry.live():
        if registry.resolve_index(idx) != idx:
            continue
        canonical = registry.records[idx]
        if mode == "keep":
            canonical.target_location = "ldr" if canonical.ldr_definitions else "inline"
            continue
        if not canonical.name:
            canonical.target_location = "inline"
            continue
        uses = aggregate_uses(registry, idx)
        if mode == "all_ldr":
            canonical.target_location = "ldr"
        elif mode == "all_inline":
            canonical.target_location = "inline"
        else:
            canonical.target_location = "ldr" if len(uses) >= mode.count else "inline"

        # A definition needs a direct tag to move into; chained templates cannot carry one.
        if (
            canonical.target_location == "inline"
            and canonical.ldr_definitions
            and all(isinstance(use, ChainedUse) for use in uses)
        ):
            canonical.target_location = "ldr"
