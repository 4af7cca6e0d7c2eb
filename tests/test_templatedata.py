"""Tests for refweave.templatedata module."""
from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from refweave.templatedata import (
    EMPTY_LOOKUP,
    TemplateDataLookup,
    cite_templates_in,
    parse_templatedata_page,
)

RESPONSE = {
    "pages": {
        "12345": {
            "title": "Template:Cite web",
            "params": {
                "title": {},
                "url": {"aliases": ["URL"]},
                "access-date": {"aliases": ["accessdate"]},
            },
            "paramOrder": ["title", "url", "access-date"],
        }
    }
}


class TestFromMapping:
    def test_list_form(self) -> None:
        lookup = TemplateDataLookup.from_mapping({"Cite web": ["title", "URL", "title"]})
        assert lookup.param_order("cite_web") == ("title", "url")
        assert "cite web" in lookup
        assert len(lookup) == 1

    def test_object_form(self) -> None:
        lookup = TemplateDataLookup.from_mapping({
            "cite news": {"order": ["title", "date"], "aliases": {"AccessDate": "access-date"}},
        })
        assert lookup.param_order("Cite news") == ("title", "date")
        assert lookup.alias_map("cite news") == {"accessdate": "access-date"}

    def test_invalid_value(self) -> None:
        with pytest.raises(ValueError):
            TemplateDataLookup.from_mapping({"cite web": 3})

    def test_invalid_aliases(self) -> None:
        with pytest.raises(ValueError):
            TemplateDataLookup.from_mapping({"cite web": {"order": [], "aliases": ["x"]}})

    def test_unknown_template(self) -> None:
        assert EMPTY_LOOKUP.param_order("cite web") == ()
        assert "cite web" not in EMPTY_LOOKUP

    def test_read_only(self) -> None:
        lookup = TemplateDataLookup.from_mapping({"cite web": ["title"]})
        with pytest.raises(TypeError):
            lookup.templates["cite news"] = lookup.info("cite web")  # type: ignore[index]


class TestTemplateDataResponse:
    def test_page_parsing(self) -> None:
        info = parse_templatedata_page(RESPONSE["pages"]["12345"])
        assert info.param_order == ("title", "url", "access-date")
        assert info.aliases == {"url": "url", "accessdate": "access-date"}

    def test_keyed_by_title(self) -> None:
        lookup = TemplateDataLookup.from_templatedata_response(RESPONSE)
        assert lookup.param_order("cite web") == ("title", "url", "access-date")

    def test_explicit_name(self) -> None:
        lookup = TemplateDataLookup.from_templatedata_response(RESPONSE, name="cite foo")
        assert "cite foo" in lookup
        assert "cite web" not in lookup

    def test_from_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "templatedata.json"
        path.write_bytes(orjson.dumps(RESPONSE))
        lookup = TemplateDataLookup.from_json_file(path)
        assert lookup.alias_map("cite web")["accessdate"] == "access-date"

    def test_from_json_file_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "order.json"
        path.write_bytes(orjson.dumps({"cite book": ["title", "isbn"]}))
        assert TemplateDataLookup.from_json_file(path).param_order("cite book") == ("title", "isbn")

    def test_from_json_file_rejects_list(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_bytes(b"[]")
        with pytest.raises(ValueError):
            TemplateDataLookup.from_json_file(path)


class TestHelpers:
    def test_merged(self) -> None:
        a = TemplateDataLookup.from_mapping({"cite web": ["title"]})
        b = TemplateDataLookup.from_mapping({"cite news": ["date"], "cite web": ["url"]})
        merged = a.merged(b)
        assert len(merged) == 2
        assert merged.param_order("cite web") == ("url",)

    def test_cite_templates_in(self) -> None:
        text = "{{Cite web|a}} {{cite news |b}} {{cite web|c}} {{harvnb|d}}"
        assert cite_templates_in(text) == ["cite web", "cite news"]
