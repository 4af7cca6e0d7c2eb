"""Core types for reference scanning, identity resolution and rewriting."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias


ChainEntryKind: TypeAlias = Literal["name", "group", "page", "pages", "location", "other"]
TargetLocation: TypeAlias = Literal["inline", "ldr"]

END_OF_DOCUMENT = sys.maxsize


# ---------------------------------------------------------------------------
# Scanner output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TemplateParam:
    """One template parameter; positional values carry their number as name."""

    name: str | None
    value: str


@dataclass(frozen=True, slots=True)
class TemplateMatch:
    """A balanced ``{{name|...}}`` occurrence located in the document."""

    start: int
    end: int
    name: str
    content: str
    params: tuple[TemplateParam, ...]


@dataclass(frozen=True, slots=True)
class ReferencesTagMatch:
    """A ``<references>`` container, block or self-closing form."""

    start: int
    end: int
    content: str
    attrs: str
    inner: str
    inner_start: int


@dataclass(frozen=True, slots=True)
class RefTagMatch:
    """A ``<ref>`` tag. ``content`` is None for the self-closing form."""

    start: int
    end: int
    attrs: str
    name: str | None
    group: str | None
    content: str | None


@dataclass(frozen=True, slots=True)
class ChainEntry:
    key: str | None
    value: str
    kind: ChainEntryKind
    index: int
    is_name: bool


@dataclass(frozen=True, slots=True)
class ChainedTemplate:
    """A ``{{r|...}}`` chained reference template."""

    id: int
    start: int
    end: int
    entries: tuple[ChainEntry, ...]

    def group_for(self, index: int) -> str | None:
        for entry in self.entries:
            if entry.kind == "group" and entry.index == index:
                return entry.value
        return None


# ---------------------------------------------------------------------------
# Uses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SelfClosingUse:
    name: str | None
    group: str | None
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class FullUse:
    """A ``<ref>content</ref>`` occurrence; doubles as a definition."""

    name: str | None
    group: str | None
    start: int
    end: int
    content: str


@dataclass(frozen=True, slots=True)
class ChainedUse:
    """One name slot of a chained template. ``slot`` is the entry position."""

    name: str | None
    group: str | None
    start: int
    end: int
    chain_id: int
    slot: int


RefUse: TypeAlias = SelfClosingUse | FullUse | ChainedUse


@dataclass(slots=True)
class ReferenceRecord:
    """Registry entry for one logical reference.

    ``canonical`` holds the arena index of the record this one was merged
    into, or None when the record is its own canonical.
    """

    id: str
    name: str | None
    group: str | None
    key: str
    definitions: list[FullUse] = field(default_factory=list)
    ldr_definitions: list[FullUse] = field(default_factory=list)
    uses: list[RefUse] = field(default_factory=list)
    canonical: int | None = None
    target_location: TargetLocation = "inline"
    content_override: str | None = None

    @property
    def first_position(self) -> int:
        starts = [u.start for u in self.uses] + [d.start for d in self.ldr_definitions]
        return min(starts) if starts else END_OF_DOCUMENT

    def first_content(self) -> str | None:
        """Override, else the first non-blank inline definition, else the first non-blank LDR one."""
        if self.content_override is not None:
            return self.content_override
        for definition in (*self.definitions, *self.ldr_definitions):
            if definition.content.strip():
                return definition.content
        return None

    def absorb(self, other: ReferenceRecord) -> None:
        """Move every occurrence of ``other`` onto this record."""
        self.definitions = _by_position(self.definitions + other.definitions)
        self.ldr_definitions = _by_position(self.ldr_definitions + other.ldr_definitions)
        self.uses = _by_position(self.uses + other.uses)
        other.definitions = []
        other.ldr_definitions = []
        other.uses = []


def _by_position(items: list[Any]) -> list[Any]:
    return sorted(items, key=lambda item: item.start)


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Edit:
    """Replace ``[start, end)`` of the original text with ``text``."""

    start: int
    end: int
    text: str

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"end must be >= start, got {self.end} < {self.start}")

    @property
    def is_append(self) -> bool:
        return self.start == END_OF_DOCUMENT and self.end == END_OF_DOCUMENT

    @classmethod
    def append(cls, text: str) -> Edit:
        return cls(END_OF_DOCUMENT, END_OF_DOCUMENT, text)
