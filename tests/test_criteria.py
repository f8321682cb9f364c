"""Tests for criteria translation."""

import pytest

from trellis.store import order_clause, to_predicate


class TestToPredicate:
    """Tests for to_predicate()."""

    def test_empty(self):
        predicate = to_predicate(None)
        assert not predicate
        assert predicate.params == []
        assert not to_predicate({})

    def test_literal_equality(self):
        predicate = to_predicate({"username": "bill"})
        assert predicate.sql == '"username" = ?'
        assert predicate.params == ["bill"]

    def test_terms_joined_with_and(self):
        predicate = to_predicate({"username": "bill", "age": {">=": 18}})
        assert predicate.sql == '"username" = ? AND "age" >= ?'
        assert predicate.params == ["bill", 18]

    @pytest.mark.parametrize(
        "operator, sql",
        [
            ("$eq", "="),
            ("$ne", "!="),
            ("<>", "!="),
            ("$lt", "<"),
            ("$lte", "<="),
            ("$gt", ">"),
            ("$gte", ">="),
            ("like", "LIKE"),
            ("$like", "LIKE"),
        ],
    )
    def test_operators(self, operator, sql):
        predicate = to_predicate({"name": {operator: "x"}})
        assert predicate.sql == f'"name" {sql} ?'
        assert predicate.params == ["x"]

    def test_in(self):
        predicate = to_predicate({"city": {"$in": ["Wareham", "Poole"]}})
        assert predicate.sql == '"city" IN (?, ?)'
        assert predicate.params == ["Wareham", "Poole"]

    def test_not_in(self):
        predicate = to_predicate({"city": {"not in": ("Poole",)}})
        assert predicate.sql == '"city" NOT IN (?)'

    def test_empty_in(self):
        assert to_predicate({"city": {"$in": []}}).sql == "0"
        assert to_predicate({"city": {"$nin": []}}).sql == "1"

    def test_in_needs_a_list(self):
        with pytest.raises(ValueError):
            to_predicate({"city": {"$in": "Poole"}})

    def test_none_is_null_check(self):
        assert to_predicate({"deleted": None}).sql == '"deleted" IS NULL'
        assert to_predicate({"deleted": {"!=": None}}).sql == '"deleted" IS NOT NULL'
        assert to_predicate({"deleted": None}).params == []

    def test_invalid_column(self):
        with pytest.raises(ValueError, match="Invalid column"):
            to_predicate({"name; DROP TABLE users": 1})

    def test_unknown_operator(self):
        with pytest.raises(ValueError, match="Unknown criteria operator"):
            to_predicate({"name": {"$regex": "x"}})

    def test_one_operator_per_column(self):
        with pytest.raises(ValueError, match="exactly one operator"):
            to_predicate({"age": {">": 1, "<": 5}})


class TestOrderClause:
    """Tests for order_clause()."""

    def test_nothing(self):
        assert order_clause() == ""

    def test_order(self):
        assert order_clause("rank") == 'ORDER BY "rank"'
        assert order_clause("rank", ascending=True) == 'ORDER BY "rank" ASC'
        assert order_clause("rank", descending=True) == 'ORDER BY "rank" DESC'

    def test_descending_wins(self):
        assert order_clause("rank", ascending=True, descending=True) == 'ORDER BY "rank" DESC'

    def test_limit(self):
        assert order_clause("rank", descending=True, limit=2) == 'ORDER BY "rank" DESC LIMIT 2'
        assert order_clause(limit=0) == "LIMIT 0"

    @pytest.mark.parametrize("limit", [-1, 1.5, "3", True])
    def test_invalid_limit(self, limit):
        with pytest.raises(ValueError):
            order_clause(limit=limit)

    def test_invalid_order_column(self):
        with pytest.raises(ValueError):
            order_clause("rank DESC; --")
