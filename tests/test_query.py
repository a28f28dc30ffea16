"""Tests for perch.http.query — QueryParams with coerced overlay."""

import pytest

from perch.http.query import QueryParams


class TestQueryParams:
    def test_getitem(self) -> None:
        q = QueryParams(b"q=hello&page=2")
        assert q["q"] == "hello"
        assert q["page"] == "2"

    def test_missing_key_raises(self) -> None:
        q = QueryParams(b"q=hello")
        with pytest.raises(KeyError):
            q["missing"]

    def test_contains(self) -> None:
        q = QueryParams(b"q=hello")
        assert "q" in q
        assert "missing" not in q

    def test_len(self) -> None:
        assert len(QueryParams(b"a=1&b=2&c=3")) == 3

    def test_get_with_default(self) -> None:
        q = QueryParams(b"q=hello")
        assert q.get("q") == "hello"
        assert q.get("missing") is None
        assert q.get("missing", "fallback") == "fallback"

    def test_get_list(self) -> None:
        q = QueryParams(b"tag=python&tag=rust&q=hello")
        assert q.get_list("tag") == ["python", "rust"]
        assert q.get_list("missing") == []

    def test_empty(self) -> None:
        q = QueryParams(b"")
        assert len(q) == 0
        assert list(q) == []

    def test_blank_value_preserved(self) -> None:
        assert QueryParams(b"flag=")["flag"] == ""

    def test_first_value_returned(self) -> None:
        assert QueryParams(b"x=first&x=second")["x"] == "first"

    def test_raw(self) -> None:
        assert QueryParams(b"a=1&b=2").raw == b"a=1&b=2"


class TestQueryParamsMerge:
    def test_to_dict_single_and_repeated(self) -> None:
        q = QueryParams(b"id=42&tag=a&tag=b")
        assert q.to_dict() == {"id": "42", "tag": ["a", "b"]}

    def test_merged_value_wins(self) -> None:
        q = QueryParams(b"id=42")
        q.merge({"id": 42})
        assert q["id"] == 42
        assert q.get("id") == 42

    def test_merge_keeps_other_keys(self) -> None:
        q = QueryParams(b"id=42&sort=asc")
        q.merge({"id": 42})
        assert q["sort"] == "asc"

    def test_merge_adds_defaults(self) -> None:
        q = QueryParams(b"id=42")
        q.merge({"limit": 10})
        assert "limit" in q
        assert set(q) == {"id", "limit"}
        assert len(q) == 2

    def test_raw_untouched_by_merge(self) -> None:
        q = QueryParams(b"id=42")
        q.merge({"id": 42})
        assert q.to_dict() == {"id": "42"}
        assert q.get_list("id") == ["42"]
