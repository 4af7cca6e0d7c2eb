"""Tests for refweave.render module."""
from __future__ import annotations

import pytest

from refweave.markup import find_references_tags, find_templates
from refweave.render import (
    LdrEntry,
    NotConvertible,
    RefStyle,
    build_container_template,
    build_references_tag,
    convertible_references_group,
    convertible_template_group,
    format_copy,
    normalize_content_block,
    normalize_ref_body,
    render_ref_self,
    render_ref_tag,
    render_template,
    retarget_name,
    template_group,
    update_container_template,
    update_references_tag,
)
from refweave.templatedata import TemplateDataLookup
from refweave.types import TemplateParam


# ── Reference tags ─────────────────────────────────────────────────


class TestRenderRef:
    def test_self_closing(self) -> None:
        assert render_ref_self("x", None) == '<ref name="x" />'
        assert render_ref_self("x", "g") == '<ref name="x" group="g" />'

    def test_chained_marker(self) -> None:
        assert render_ref_self("x", None, chained=True) == "{{r|x}}"
        assert render_ref_self("x", "g", chained=True) == "{{r|x|group=g}}"

    def test_nameless_marker(self) -> None:
        assert render_ref_self(None, None) == "<ref />"

    def test_escapes_quotes(self) -> None:
        assert render_ref_self('a"b', None) == '<ref name="a&quot;b" />'

    def test_full_tag_trims_body(self) -> None:
        assert render_ref_tag("x", None, " Body \n") == '<ref name="x">Body</ref>'
        assert render_ref_tag(None, None, "Body") == "<ref>Body</ref>"
        assert render_ref_tag("x", "n", "B") == '<ref name="x" group="n">B</ref>'

    def test_normalize_content_block(self) -> None:
        assert normalize_content_block("a  \n\n\n\nb ") == "a\n\nb"


class TestRetargetName:
    def test_double_quoted(self) -> None:
        assert retarget_name('<ref name="old">Body</ref>', "new") == '<ref name="new">Body</ref>'

    def test_single_quoted(self) -> None:
        assert retarget_name("<ref name='old'/>", "new") == "<ref name='new'/>"

    def test_bare_value(self) -> None:
        assert retarget_name("<ref name=old />", "new") == "<ref name=new />"

    def test_bare_value_needing_quotes(self) -> None:
        assert retarget_name("<ref name=old />", "new name") == '<ref name="new name" />'

    def test_body_untouched(self) -> None:
        assert retarget_name('<ref name="a">name=foo</ref>', "b") == '<ref name="b">name=foo</ref>'

    def test_no_name_attribute(self) -> None:
        assert retarget_name("<ref>Body</ref>", "new") is None


class TestFormatCopy:
    def test_formats(self) -> None:
        assert format_copy("x", "raw") == "x"
        assert format_copy("x", "r") == "{{r|x}}"
        assert format_copy("x", "ref") == '<ref name="x" />'


# ── Templates ──────────────────────────────────────────────────────


class TestRenderTemplate:
    def test_named_and_positional(self) -> None:
        params = [TemplateParam("1", "a"), TemplateParam("group", "n")]
        assert render_template("reflist", params) == "{{reflist|a|group=n}}"

    def test_no_params(self) -> None:
        assert render_template("reflist", []) == "{{reflist}}"


class TestNormalizeRefBody:
    def test_keeps_order_without_lookup(self) -> None:
        assert normalize_ref_body("{{cite web|b=1|a=2}} tail") == "{{cite web |b=1 |a=2}} tail"

    def test_orders_by_lookup_and_resolves_aliases(self) -> None:
        lookup = TemplateDataLookup.from_mapping({
            "cite web": {"order": ["title", "url", "access-date"], "aliases": {"accessdate": "access-date"}},
        })
        body = "{{Cite web|url=http://x|title=T|accessdate=5 July 2023}}"
        assert normalize_ref_body(body, lookup) == "{{Cite web |title=T |url=http://x |accessdate=2023-07-05}}"

    def test_unknown_params_follow(self) -> None:
        lookup = TemplateDataLookup.from_mapping({"cite web": ["title"]})
        body = "{{cite web|zz=1|title=T}}"
        assert normalize_ref_body(body, lookup) == "{{cite web |title=T |zz=1}}"

    def test_other_templates_untouched(self) -> None:
        assert normalize_ref_body(" {{harvnb|X|2000}} ") == "{{harvnb|X|2000}}"

    def test_nested_templates_kept(self) -> None:
        body = "{{cite web|title={{lang|ja|X}}|date=2020-1-2}}"
        assert normalize_ref_body(body) == "{{cite web |title={{lang|ja|X}} |date=2020-01-02}}"


# ── Containers ─────────────────────────────────────────────────────


class TestConvertible:
    def test_template_group(self) -> None:
        params = [TemplateParam("refs", "x"), TemplateParam("group", "n")]
        assert convertible_template_group(params) == "n"
        assert template_group(params) == "n"

    def test_template_with_options(self) -> None:
        with pytest.raises(NotConvertible):
            convertible_template_group([TemplateParam("colwidth", "30em")])

    def test_template_repeated_param(self) -> None:
        with pytest.raises(NotConvertible):
            convertible_template_group([TemplateParam("group", "a"), TemplateParam("group", "b")])

    def test_references_group(self) -> None:
        assert convertible_references_group('group="n"') == "n"
        assert convertible_references_group("") is None

    def test_references_with_options(self) -> None:
        with pytest.raises(NotConvertible):
            convertible_references_group('responsive="0"')


class TestBuildContainers:
    entries = [LdrEntry("b", None, "B"), LdrEntry("a", None, "A")]

    def test_empty_references_tag(self) -> None:
        assert build_references_tag([], None) == "<references />"
        assert build_references_tag([], "n") == '<references group="n" />'

    def test_sorted_references_tag(self) -> None:
        tag = build_references_tag(self.entries, None, style=RefStyle(sort=True))
        assert tag == '<references>\n<ref name="a">A</ref>\n<ref name="b">B</ref>\n</references>'

    def test_container_template(self) -> None:
        assert build_container_template(self.entries[:1], None) == '{{reflist|refs=\n<ref name="b">B</ref>\n}}'
        assert build_container_template([], "n") == "{{reflist|group=n}}"

    def test_update_template_appends_refs(self) -> None:
        match = find_templates("{{reflist|colwidth=30em}}", ["reflist"])[0]
        updated = update_container_template(match, [LdrEntry("a", None, "A")])
        assert updated == '{{reflist|colwidth=30em|refs=\n<ref name="a">A</ref>\n}}'

    def test_update_template_clears_refs(self) -> None:
        match = find_templates('{{reflist|refs=\n<ref name="a">A</ref>\n}}', ["reflist"])[0]
        assert update_container_template(match, []) == "{{reflist}}"

    def test_update_references_tag_keeps_attrs(self) -> None:
        tag = find_references_tags('<references group="n" />')[0]
        updated = update_references_tag(tag, [LdrEntry("a", "n", "A")])
        assert updated == '<references group="n">\n<ref name="a" group="n">A</ref>\n</references>'
