"""Tests for refweave.identity module."""
from __future__ import annotations

from refweave.identity import apply_dedupe, apply_renames, normalize_content, normalize_rename_map
from refweave.registry import build_registry

CONTAINERS = ("reflist", "references")


# ── Renames ────────────────────────────────────────────────────────


class TestNormalizeRenameMap:
    def test_drops_identity_and_empty_keys(self) -> None:
        assert normalize_rename_map({"a": "a", "": "x", "b": None, "c": "d"}) == {"b": None, "c": "d"}


class TestApplyRenames:
    def test_rename_named(self) -> None:
        registry = build_registry('x<ref name="a">A</ref>', CONTAINERS)
        outcome = apply_renames(registry, {"a": "b"}, {})
        assert outcome.renamed == [("a", "b")]
        assert outcome.warnings == []
        assert registry.get("::b") is not None
        assert registry.get("::a") is None

    def test_strip_name(self) -> None:
        registry = build_registry('x<ref name="a">A</ref>', CONTAINERS)
        outcome = apply_renames(registry, {"a": None}, {})
        assert outcome.renamed == [("a", None)]
        [(_, rec)] = list(registry.iter_live())
        assert rec.name is None

    def test_unmatched_rename_warns(self) -> None:
        registry = build_registry('x<ref name="a">A</ref>', CONTAINERS)
        outcome = apply_renames(registry, {"zzz": "b"}, {})
        assert outcome.renamed == []
        assert outcome.warnings == ["rename 'zzz' matched no reference"]

    def test_rename_into_existing_name_merges(self) -> None:
        registry = build_registry('<ref name="a">Same</ref> <ref name="b" />', CONTAINERS)
        apply_renames(registry, {"b": "a"}, {})
        assert len(registry.live()) == 1
        a = registry.get("::a")
        assert a is not None
        assert len(a.uses) == 2

    def test_nameless_by_id(self) -> None:
        text = "First <ref>Uno</ref> Second <ref>Dos</ref> Third <ref>Tres</ref>"
        registry = build_registry(text, CONTAINERS)
        outcome = apply_renames(registry, {}, {"__nameless_1": "SecondRef"})
        assert outcome.renamed == [("__nameless_1", "SecondRef")]
        rec = registry.get("::SecondRef")
        assert rec is not None
        assert rec.first_content() == "Dos"

    def test_nameless_in_order(self) -> None:
        text = "First <ref>Uno</ref> Second <ref>Dos</ref> Third <ref>Tres</ref>"
        registry = build_registry(text, CONTAINERS)
        outcome = apply_renames(registry, {}, {"a": "RefA", "b": "RefB"})
        assert outcome.renamed == [("__nameless_0", "RefA"), ("__nameless_1", "RefB")]
        assert outcome.warnings == []
        names = [rec.name for _, rec in registry.iter_live()]
        assert names == ["RefA", "RefB", None]

    def test_nameless_leftover_warns(self) -> None:
        registry = build_registry("<ref>Only</ref>", CONTAINERS)
        outcome = apply_renames(registry, {}, {"a": "X", "b": "Y"})
        assert outcome.renamed == [("__nameless_0", "X")]
        assert outcome.warnings == ["nameless rename 'b' matched no unnamed reference"]


# ── Dedupe ─────────────────────────────────────────────────────────


class TestNormalizeContent:
    def test_collapses_whitespace(self) -> None:
        assert normalize_content("  a \n b ") == "a b"


class TestApplyDedupe:
    def test_identical_text(self) -> None:
        text = '<ref name="x">Same content</ref> text <ref name="y">Same  content</ref>'
        registry = build_registry(text, CONTAINERS)
        changes = apply_dedupe(registry)
        assert changes == [("y", "x")]
        y = registry.get("::y")
        assert y is not None
        assert y.canonical == registry.by_key["::x"]

    def test_different_text_kept(self) -> None:
        registry = build_registry('<ref name="x">One</ref><ref name="y">Two</ref>', CONTAINERS)
        assert apply_dedupe(registry) == []

    def test_nameless_not_merged(self) -> None:
        registry = build_registry("<ref>Same</ref><ref>Same</ref>", CONTAINERS)
        assert apply_dedupe(registry) == []

    def test_compatible_templates_merge_params(self) -> None:
        text = (
            '<ref name="x">{{cite web |url=https://example.com/a |title=Foo}}</ref>'
            '<ref name="y">{{cite web|title=Foo|url=https://example.com/a|website=Example}}</ref>'
        )
        registry = build_registry(text, CONTAINERS)
        assert apply_dedupe(registry) == [("y", "x")]
        x = registry.get("::x")
        assert x is not None
        assert x.content_override == "{{cite web |url=https://example.com/a |title=Foo|website=Example}}"

    def test_conflicting_templates_kept(self) -> None:
        text = '<ref name="x">{{cite web|title=Foo}}</ref><ref name="y">{{cite web|title=Bar}}</ref>'
        registry = build_registry(text, CONTAINERS)
        assert apply_dedupe(registry) == []

    def test_list_defined_content_counts(self) -> None:
        text = (
            'a<ref name="x">Same</ref> b<ref name="y" />\n'
            '{{reflist|refs=\n<ref name="y">Same</ref>\n}}'
        )
        registry = build_registry(text, CONTAINERS)
        assert apply_dedupe(registry) == [("y", "x")]
