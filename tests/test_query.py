"""Tests for list query argument parsing."""

import pytest
from werkzeug.datastructures import MultiDict

from tradeacademy.models import Course
from tradeacademy.utils.exceptions import ValidationError
from tradeacademy.utils.query import apply_list_args, parse_fields, parse_pagination

pytestmark = pytest.mark.unit


class TestPagination:

    def test_defaults(self, app):
        assert parse_pagination(MultiDict()) == (1, 10)

    def test_limit_is_clamped(self, app):
        assert parse_pagination(MultiDict({"page": "3", "limit": "500"})) == (3, 100)

    @pytest.mark.parametrize("args", [
        {"page": "0"},
        {"limit": "-1"},
        {"page": "two"},
    ])
    def test_invalid_values(self, app, args):
        with pytest.raises(ValidationError):
            parse_pagination(MultiDict(args))


def test_parse_fields():
    assert parse_fields(MultiDict({"fields": "title, level,,"})) == ["title", "level"]
    assert parse_fields(MultiDict()) is None


class TestFilters:

    @pytest.mark.parametrize("args", [
        {"price[gte]": "cheap"},
        {"level": "grandmaster"},
        {"price[between]": "1"},
        {"featured": "maybe"},
        {"sort": "-colour"},
        {"bad-key": "1"},
    ])
    def test_rejected_arguments(self, app, args):
        with pytest.raises(ValidationError):
            apply_list_args(Course.query, Course, MultiDict(args))

    def test_filters_and_sort_apply(self, app, course):
        args = MultiDict({"level": "beginner", "price[lte]": "0", "sort": "-title"})

        rows = apply_list_args(Course.query, Course, args).all()

        assert [c.title for c in rows] == ["Trading Basics"]
