"""Tests for refweave.chains module."""
from __future__ import annotations

from refweave.chains import build_chain_string, collapse_block, plan_chain_collapse, render_chained_template
from refweave.edits import apply_edits
from refweave.markup import parse_chain_entries
from refweave.types import ChainedTemplate


def _chain(params: str) -> ChainedTemplate:
    return ChainedTemplate(id=0, start=0, end=len(params) + 6, entries=tuple(parse_chain_entries(params)))


def _same(slot: int, entry) -> str:
    return entry.value


# ── Building ───────────────────────────────────────────────────────


class TestBuildChainString:
    def test_round_trip(self) -> None:
        entries = parse_chain_entries("foo|p=2|bar|p2=8-9")
        assert build_chain_string(entries) == "{{r|foo|p=2|bar|p2=8-9}}"

    def test_no_names(self) -> None:
        assert build_chain_string(parse_chain_entries("p=2")) is None

    def test_renumber_compacts_indices(self) -> None:
        entries = [e for e in parse_chain_entries("foo|bar|lang2=en|baz|test3=4-5") if e.value != "foo"]
        assert build_chain_string(entries, renumber=True) == "{{r|bar|lang=en|baz|test2=4-5}}"


class TestRenderChainedTemplate:
    def test_unchanged_template_is_left_alone(self) -> None:
        assert render_chained_template(_chain("foo|p=2"), _same, as_template=True) is None

    def test_renamed_in_place(self) -> None:
        rendered = render_chained_template(
            _chain("foo|p=2|bar|p2=8-9"),
            lambda slot, e: e.value.upper(),
            as_template=True,
        )
        assert rendered == "{{r|FOO|p=2|BAR|p2=8-9}}"

    def test_aliases_preserved(self) -> None:
        rendered = render_chained_template(
            _chain("name=alpha|grp=g1|p=2|pages2=10-12|at3=fig1"),
            lambda slot, e: "alpha-renamed",
            as_template=True,
        )
        assert rendered == "{{r|name=alpha-renamed|grp=g1|p=2|pages2=10-12|at3=fig1}}"

    def test_split_into_tags(self) -> None:
        rendered = render_chained_template(_chain("foo|grp=g1|p=2|bar|grp2=g2|pp2=4-5"), _same, as_template=False)
        assert rendered == '<ref name="foo" group="g1" />{{rp|p=2}}<ref name="bar" group="g2" />{{rp|pp=4-5}}'

    def test_pages_label_kept(self) -> None:
        rendered = render_chained_template(_chain("foo|pages=10-12"), _same, as_template=False)
        assert rendered == '<ref name="foo" />{{rp|pages=10-12}}'

    def test_location(self) -> None:
        rendered = render_chained_template(_chain("foo|at=fig1"), _same, as_template=False)
        assert rendered == '<ref name="foo" />{{rp|at=fig1}}'

    def test_unsupported_params_stay_chained(self) -> None:
        rendered = render_chained_template(_chain("foo|lang=en|p=2"), _same, as_template=False)
        assert rendered == "{{r|foo|lang=en|p=2}}"

    def test_mixed_split(self) -> None:
        rendered = render_chained_template(_chain("foo|p=2|bar|lang2=en"), _same, as_template=False)
        assert rendered == '<ref name="foo" />{{rp|p=2}}{{r|bar|lang=en}}'


# ── Collapsing ─────────────────────────────────────────────────────


class TestCollapseBlock:
    def test_ref_with_locator(self) -> None:
        assert collapse_block('<ref name="foo" />{{rp|p=3}}') == "{{r|foo|p=3}}"

    def test_indexed_group_when_details_present(self) -> None:
        block = '<ref name="foo" />{{rp|p=2}}<ref name="bar" group="g" />{{rp|pp=4-5}}'
        assert collapse_block(block) == "{{r|foo|p=2|bar|group2=g|pp2=4-5}}"

    def test_three_entries(self) -> None:
        block = (
            '<ref name="foo" group="g1" />{{rp|p=2}}'
            '<ref name="bar" />{{rp|pp=4-5}}'
            '<ref name="baz" />{{rp|loc=fig1}}'
        )
        assert collapse_block(block) == "{{r|foo|group=g1|p=2|bar|pp2=4-5|baz|loc3=fig1}}"

    def test_groups_without_details(self) -> None:
        block = "{{r|foo|group=g1}}{{r|bar|group=g2}}"
        assert collapse_block(block) == "{{r|foo|group=g1|bar|group=g2}}"

    def test_trailing_space_kept(self) -> None:
        assert collapse_block('<ref name="foo" /> ') == "{{r|foo}} "

    def test_line_break_untouched(self) -> None:
        block = '<ref name="a" />\n<ref name="b" />'
        assert collapse_block(block) == block

    def test_unsupported_locator_kept(self) -> None:
        block = '<ref name="foo" />{{rp|lang=en}}'
        assert collapse_block(block) == block


class TestPlanChainCollapse:
    def test_single_marker(self) -> None:
        text = 'See <ref name="foo" /> and'
        assert apply_edits(text, plan_chain_collapse(text)) == "See {{r|foo}} and"

    def test_commented_marker_ignored(self) -> None:
        assert plan_chain_collapse('<!-- <ref name="a" /> -->') == []

    def test_existing_chain_unchanged(self) -> None:
        assert plan_chain_collapse("x {{r|eurogamer_20110728|p=2|youxichaguan_20231130}} y") == []
