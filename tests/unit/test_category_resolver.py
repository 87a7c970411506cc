"""
Unit tests for CategoryResolver.

Run: pytest tests/unit/test_category_resolver.py -v
"""

import pytest

from services.category_resolver import CategoryResolver, build_category_filter


@pytest.fixture
def categories():
    return [
        {"id": "cat-laptops", "name": "Laptops"},
        {"id": "cat-phones", "name": "Smart Phones"},
        {"id": "Audio", "name": "Headphones"},
    ]


class TestResolve:
    """Tests for CategoryResolver.resolve()"""

    def test_resolves_by_id(self, categories):
        resolver = CategoryResolver(categories)

        assert resolver.resolve("cat-phones") == "cat-phones"

    @pytest.mark.parametrize("reference", ["Laptops", "laptops", "LAPTOPS", "lApToPs"])
    def test_resolves_name_case_insensitively(self, categories, reference):
        resolver = CategoryResolver(categories)

        assert resolver.resolve(reference) == "cat-laptops"

    def test_id_wins_over_name(self, categories):
        """A reference equal to one category's id resolves to that id."""
        resolver = CategoryResolver(categories + [{"id": "cat-x", "name": "Audio"}])

        assert resolver.resolve("Audio") == "Audio"

    def test_unknown_reference(self, categories):
        resolver = CategoryResolver(categories)

        assert resolver.resolve("doesnotexist") is None

    def test_ids_are_case_sensitive(self, categories):
        resolver = CategoryResolver(categories)

        assert resolver.resolve("CAT-LAPTOPS") is None


class TestLoad:
    """Tests for CategoryResolver.load()"""

    def test_loads_matching_categories_in_one_query(self, mock_supabase, categories):
        mock_supabase.set_table_data("category", categories)

        resolver = CategoryResolver.load(mock_supabase, ["smart phones", "cat-laptops", "nope"])

        assert len(resolver) == 2
        assert resolver.resolve("Smart Phones") == "cat-phones"
        assert resolver.resolve("cat-laptops") == "cat-laptops"
        assert resolver.resolve("nope") is None

    def test_like_wildcards_are_literal(self, mock_supabase, categories):
        """A reference containing % does not match arbitrary names."""
        mock_supabase.set_table_data("category", categories)

        resolver = CategoryResolver.load(mock_supabase, ["%"])

        assert len(resolver) == 0

    def test_empty_references_skip_query(self):
        class NoQueries:
            def table(self, name):
                raise AssertionError("no query expected")

        resolver = CategoryResolver.load(NoQueries(), ["", ""])

        assert len(resolver) == 0


class TestBuildCategoryFilter:
    """Tests for build_category_filter()"""

    def test_ids_and_names(self):
        result = build_category_filter(["Laptops", "c-1"])

        assert result == 'id.in.("Laptops","c-1"),name.ilike."Laptops",name.ilike."c-1"'

    def test_quotes_and_wildcards_escaped(self):
        result = build_category_filter(['50% "off"'])

        assert result == 'id.in.("50% \\"off\\""),name.ilike."50\\\\% \\"off\\""'
