"""Tests for alias resolution of Notion properties and front matter keys."""

from datetime import datetime, timezone

import pytest

from anivia.errors import DocumentValidationError
from anivia.field_mapping import (
    LOCAL_FIELD_MAPPINGS,
    NOTION_FIELD_MAPPINGS,
    FieldMapping,
    extract_local_value,
    extract_notion_value,
    parse_datetime,
    resolve_field,
    resolve_fields,
)
from conftest import checkbox_prop, files_prop, multi_select_prop, select_prop, text_prop, title_prop, url_prop


def notion_mapping(target: str) -> FieldMapping:
    return next(m for m in NOTION_FIELD_MAPPINGS if m.target == target)


def local_mapping(target: str) -> FieldMapping:
    return next(m for m in LOCAL_FIELD_MAPPINGS if m.target == target)


class TestAliasOrder:
    BAG = {
        "Category": multi_select_prop("a"),
        "分类": multi_select_prop("b"),
    }

    def test_first_declared_candidate_wins(self):
        mapping = FieldMapping(("Category", "分类"), "multi_select", "categories", default=[])
        assert resolve_field(self.BAG, mapping, extract_notion_value) == ("Category", ["a"])

    def test_reordering_candidates_flips_the_winner(self):
        mapping = FieldMapping(("分类", "Category"), "multi_select", "categories", default=[])
        assert resolve_field(self.BAG, mapping, extract_notion_value) == ("分类", ["b"])

    def test_names_match_case_insensitively(self):
        mapping = FieldMapping(("category",), "multi_select", "categories", default=[])
        assert resolve_field({"CATEGORY": multi_select_prop("x")}, mapping, extract_notion_value)[1] == ["x"]

    def test_wrong_kind_falls_through_to_next_candidate(self):
        mapping = FieldMapping(("Published", "Publish"), "checkbox", "published", default=False)
        bag = {"Published": text_prop("yes"), "Publish": checkbox_prop(True)}
        assert resolve_field(bag, mapping, extract_notion_value) == ("Publish", True)

    def test_default_when_nothing_resolves(self):
        mapping = notion_mapping("tags")
        key, value = resolve_field({}, mapping, extract_notion_value)
        assert key is None
        assert value == []
        # defaults are never shared between documents
        value.append("x")
        assert mapping.default == []


class TestNotionExtraction:
    def test_unchecked_box_is_a_value(self):
        bag = {"发布": checkbox_prop(False), "Published": checkbox_prop(True)}
        assert resolve_field(bag, notion_mapping("published"), extract_notion_value) == ("发布", False)

    def test_single_select_accepted_for_categories(self):
        bag = {"Category": select_prop("Notes")}
        assert resolve_field(bag, notion_mapping("categories"), extract_notion_value)[1] == ["Notes"]

    def test_empty_select_is_unresolved(self):
        bag = {"Category": select_prop(None)}
        assert resolve_field(bag, notion_mapping("categories"), extract_notion_value) == (None, [])

    def test_files_unwrap_to_urls(self):
        prop = {
            "type": "files",
            "files": [
                {"type": "file", "file": {"url": "https://s3.example.com/a.png"}},
                {"type": "external", "external": {"url": "https://img.example.com/b.png"}},
            ],
        }
        value = extract_notion_value(prop, notion_mapping("gallery_imgs"))
        assert value == ["https://s3.example.com/a.png", "https://img.example.com/b.png"]

    def test_cover_accepts_url_property(self):
        bag = {"Cover": url_prop("https://img.example.com/c.png")}
        assert resolve_field(bag, notion_mapping("featured_img"), extract_notion_value)[1] == [
            "https://img.example.com/c.png"
        ]

    def test_cover_prefers_files_alias_order(self):
        bag = {"Cover": url_prop("https://img.example.com/late.png"), "配图": files_prop("https://img.example.com/first.png")}
        assert resolve_field(bag, notion_mapping("featured_img"), extract_notion_value) == (
            "配图",
            ["https://img.example.com/first.png"],
        )

    def test_title_joins_rich_text_parts(self):
        prop = {"type": "title", "title": [{"plain_text": "Hello "}, {"plain_text": "World"}]}
        assert extract_notion_value(prop, notion_mapping("title")) == "Hello World"

    def test_blank_title_is_unresolved(self):
        assert extract_notion_value(title_prop("   "), notion_mapping("title")) is None


class TestLocalExtraction:
    @pytest.mark.parametrize("raw, expected", [(True, True), ("TRUE", True), ("false", False), (" True ", True)])
    def test_booleans(self, raw, expected):
        assert extract_local_value(raw, local_mapping("published")) is expected

    @pytest.mark.parametrize("raw", ["yes", 1, ["true"]])
    def test_other_boolean_values_use_the_default(self, raw):
        _, value = resolve_field({"published": raw}, local_mapping("published"), extract_local_value)
        assert value is False

    def test_scalar_is_wrapped_into_array(self):
        assert extract_local_value("Notes", local_mapping("categories")) == ["Notes"]

    def test_array_drops_empty_items(self):
        assert extract_local_value(["a", "", None, 3], local_mapping("tags")) == ["a", "3"]

    def test_slug_is_required(self):
        with pytest.raises(DocumentValidationError) as exc_info:
            resolve_fields({"title": "x"}, LOCAL_FIELD_MAPPINGS, extract_local_value)
        assert exc_info.value.missing_fields == ["slug"]

    def test_consumed_keys_are_reported(self):
        values, consumed = resolve_fields(
            {"slug": "post", "description": "short", "author": "me"},
            LOCAL_FIELD_MAPPINGS,
            extract_local_value,
        )
        assert values["excerpt"] == "short"
        assert consumed == {"slug", "description"}

    def test_date_is_left_raw(self):
        assert extract_local_value("2024-03-01 08:00:00", local_mapping("created_time")) == "2024-03-01 08:00:00"
        assert extract_local_value("not a date", local_mapping("created_time")) is None


class TestParseDatetime:
    def test_naive_string_uses_given_timezone(self):
        parsed = parse_datetime("2024-03-01 08:00:00")
        assert parsed == datetime(2024, 3, 1, 8, tzinfo=timezone.utc)

    def test_z_suffix(self):
        assert parse_datetime("2024-03-01T08:00:00.000Z") == datetime(2024, 3, 1, 8, tzinfo=timezone.utc)

    def test_yaml_date(self):
        from datetime import date

        assert parse_datetime(date(2024, 3, 1)) == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_datetime("soon") is None
        assert parse_datetime(None) is None
