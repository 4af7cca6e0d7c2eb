"""Tests for refweave.markup module."""
from __future__ import annotations

from refweave.markup import (
    extract_attr,
    find_chained_templates,
    find_references_tags,
    find_templates,
    group_key,
    is_auto_generated_name,
    is_single_template,
    mask_inert_spans,
    match_braces,
    parse_chain_entries,
    parse_template_params,
    pick_template_param,
    sanitize_markup,
    scan_document,
    scan_full_refs,
    scan_self_closing_refs,
    split_params,
    split_template_params,
    template_name,
)
from refweave.types import TemplateParam


# ── Masking ────────────────────────────────────────────────────────


class TestMasking:
    def test_mask_preserves_length(self) -> None:
        text = "a<!-- x -->b"
        masked = mask_inert_spans(text)
        assert len(masked) == len(text)
        assert masked == "a" + " " * 10 + "b"

    def test_mask_nowiki_and_pre(self) -> None:
        text = "<nowiki><ref /></nowiki>|<pre>{{r|x}}</pre>"
        masked = mask_inert_spans(text)
        assert "<ref" not in masked
        assert "{{r" not in masked
        assert masked.strip() == "|"

    def test_sanitize_removes_blocks(self) -> None:
        assert sanitize_markup("a<!-- x -->b<nowiki><ref/></nowiki>c") == "abc"


# ── Braces and parameters ──────────────────────────────────────────


class TestBraces:
    def test_nested(self) -> None:
        text = "{{a|{{b}}}} tail"
        assert match_braces(text, 0) == 11

    def test_unterminated(self) -> None:
        assert match_braces("{{a|{{b}}", 0) == -1

    def test_is_single_template(self) -> None:
        assert is_single_template(" {{a|b}} ")
        assert not is_single_template("{{a}} tail")


class TestSplitParams:
    def test_respects_links_and_templates(self) -> None:
        assert split_params("a|[[b|c]]|{{d|e}}| f ") == ["a", "[[b|c]]", "{{d|e}}", "f"]

    def test_template_split_ignores_links(self) -> None:
        assert split_template_params("a|[[b|c]]") == ["a", "[[b", "c]]"]


class TestParseTemplateParams:
    def test_named_and_positional(self) -> None:
        params = parse_template_params("{{cite web|title=Foo|url=http://x|bar}}")
        assert params == [
            TemplateParam("title", "Foo"),
            TemplateParam("url", "http://x"),
            TemplateParam("1", "bar"),
        ]

    def test_param_string(self) -> None:
        params = parse_template_params("|a=1|b")
        assert params == [TemplateParam("a", "1"), TemplateParam("1", "b")]

    def test_no_params(self) -> None:
        assert parse_template_params("{{reflist}}") == []

    def test_pick_is_case_insensitive(self) -> None:
        params = parse_template_params("{{cite web|title=Foo|URL=http://x}}")
        assert pick_template_param(params, "url") == "http://x"

    def test_pick_skips_blank_values(self) -> None:
        params = parse_template_params("{{cite web|title=|script-title=Bar}}")
        assert pick_template_param(params, "title", "script-title") == "Bar"

    def test_template_name(self) -> None:
        assert template_name("{{Cite web |a=b}}") == "Cite web"
        assert template_name("{{reflist}}") == "reflist"
        assert template_name("plain") is None


class TestExtractAttr:
    def test_quoted_and_bare(self) -> None:
        assert extract_attr('name="foo" group=bar', "name") == "foo"
        assert extract_attr('name="foo" group=bar', "group") == "bar"
        assert extract_attr("name='x'", "name") == "x"

    def test_empty_value_is_none(self) -> None:
        assert extract_attr('name=""', "name") is None

    def test_prefixed_attribute_ignored(self) -> None:
        assert extract_attr('data-name="x"', "name") is None


# ── Templates and tags ─────────────────────────────────────────────


class TestFindTemplates:
    def test_container_template(self) -> None:
        text = 'x {{Reflist|refs=\n<ref name="a">A</ref>\n}} y'
        matches = find_templates(text, ["reflist"])
        assert len(matches) == 1
        match = matches[0]
        assert match.name == "Reflist"
        assert text[match.start:match.end] == match.content
        assert match.params[0].name == "refs"

    def test_other_templates_ignored(self) -> None:
        assert find_templates("{{reflist-talk}} {{cite web|a=b}}", ["reflist"]) == []

    def test_masked_occurrence_skipped(self) -> None:
        text = "<!-- {{reflist}} -->{{reflist}}"
        matches = find_templates(text, ["reflist"], masked=mask_inert_spans(text))
        assert [m.start for m in matches] == [20]


class TestFindReferencesTags:
    def test_self_closing_with_group(self) -> None:
        tags = find_references_tags('<references group="n" />')
        assert len(tags) == 1
        assert tags[0].attrs == 'group="n"'
        assert tags[0].inner == ""

    def test_block(self) -> None:
        text = '<references>\n<ref name="a">A</ref>\n</references>'
        tags = find_references_tags(text)
        assert len(tags) == 1
        assert tags[0].inner == '\n<ref name="a">A</ref>\n'
        assert text[tags[0].inner_start:].startswith("\n<ref")


class TestScanRefs:
    def test_full_and_self_closing(self) -> None:
        text = '<ref name=a>X</ref><ref name="b"/>'
        full = scan_full_refs(text)
        self_closing = scan_self_closing_refs(text)
        assert [(m.name, m.content) for m in full] == [("a", "X")]
        assert [m.name for m in self_closing] == ["b"]
        assert self_closing[0].content is None

    def test_group_attribute(self) -> None:
        full = scan_full_refs('<ref name="foo" group="notes">A note</ref>')
        assert full[0].group == "notes"

    def test_unnamed(self) -> None:
        full = scan_full_refs("<ref>Plain</ref>")
        assert full[0].name is None


# ── Chained templates ──────────────────────────────────────────────


class TestParseChainEntries:
    def test_names_and_locators(self) -> None:
        entries = parse_chain_entries("foo|p=2|bar|pp2=4-5")
        assert [(e.kind, e.index, e.value) for e in entries] == [
            ("name", 1, "foo"),
            ("page", 1, "2"),
            ("name", 2, "bar"),
            ("pages", 2, "4-5"),
        ]

    def test_bare_group_follows_later_name(self) -> None:
        entries = parse_chain_entries("n1=foo|grp=g1|bar|group=g2")
        groups = [(e.index, e.value) for e in entries if e.kind == "group"]
        assert groups == [(1, "g1"), (2, "g2")]

    def test_numbered_positional_name(self) -> None:
        entries = parse_chain_entries("n1=foo|name2=bar|3=baz")
        assert [(e.index, e.value) for e in entries if e.is_name] == [(1, "foo"), (2, "bar"), (3, "baz")]

    def test_unknown_key_is_other(self) -> None:
        entries = parse_chain_entries("foo|lang2=en")
        assert entries[1].kind == "other"
        assert entries[1].index == 2

    def test_empty_values_dropped(self) -> None:
        entries = parse_chain_entries("foo|p=")
        assert len(entries) == 1


class TestFindChainedTemplates:
    def test_finds_r_only(self) -> None:
        chains = find_chained_templates("a {{r|x}} {{R|y|p=1}} {{rp|p=2}} {{r}}")
        assert len(chains) == 2
        assert [c.id for c in chains] == [0, 1]
        assert chains[1].entries[0].value == "y"

    def test_nested_in_other_template(self) -> None:
        chains = find_chained_templates("{{efn|note{{r|x}}}}")
        assert len(chains) == 1


class TestScanDocument:
    def test_classifies_occurrences(self) -> None:
        text = (
            'A<ref name="a">Alpha</ref> B<ref name="a" /> C{{r|b}}\n'
            '{{reflist|refs=\n<ref name="b">Beta</ref>\n}}\n'
            '<!-- <ref name="c">Hidden</ref> -->'
        )
        scan = scan_document(text, ["reflist"])
        assert [m.name for m in scan.full_refs] == ["a"]
        assert [m.name for m in scan.self_closing_refs] == ["a"]
        assert len(scan.chains) == 1
        assert [m.name for m in scan.ldr_refs] == ["b"]
        assert len(scan.templates) == 1

    def test_references_block_entries_are_ldr(self) -> None:
        text = 'x<ref name="a" />\n<references>\n<ref name="a">A</ref>\n</references>'
        scan = scan_document(text, ["reflist"])
        assert scan.full_refs == ()
        assert [m.content for m in scan.ldr_refs] == ["A"]


# ── Name helpers ───────────────────────────────────────────────────


class TestNameHelpers:
    def test_group_key(self) -> None:
        assert group_key("alpha") == "A"
        assert group_key("2020x") == "#"
        assert group_key("étude") == "*"
        assert group_key("  z") == "Z"
        assert group_key(None) == "*"

    def test_auto_generated_names(self) -> None:
        assert is_auto_generated_name(":0")
        assert is_auto_generated_name("auto")
        assert is_auto_generated_name("ReferenceA")
        assert is_auto_generated_name(None)

    def test_real_names(self) -> None:
        assert not is_auto_generated_name("smith2020")
        assert not is_auto_generated_name("Referenced")
