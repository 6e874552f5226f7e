"""
Unit tests for domain filter expressions.
"""

import pytest

from erpsync.rpc.domain import (
    And, Not, Or, Predicate, all_of, date_range, from_wire, to_wire,
)


class TestPredicate:
    """Tests for leaf predicates."""

    def test_to_wire(self):
        """Test a predicate flattens to a single triple."""
        assert Predicate("state", "=", "posted").to_wire() == [["state", "=", "posted"]]

    def test_tuple_values_become_lists(self):
        """Test tuple values are sent as arrays."""
        assert Predicate("id", "in", (1, 2)).to_wire() == [["id", "in", [1, 2]]]

    def test_invalid_operator(self):
        """Test unknown operators are rejected at construction."""
        with pytest.raises(ValueError, match="Unsupported domain operator"):
            Predicate("state", "==", "posted")

    def test_empty_field(self):
        """Test empty field names are rejected."""
        with pytest.raises(ValueError):
            Predicate("", "=", 1)

    def test_prefixed(self):
        """Test prefixing targets a related field."""
        assert Predicate("state", "=", "posted").prefixed("move_id") == Predicate("move_id.state", "=", "posted")


class TestFlattening:
    """Tests for prefix-notation flattening."""

    def test_and_of_three(self):
        """Test n operands produce n-1 markers."""
        domain = And(Predicate("a", "=", 1), Predicate("b", "=", 2), Predicate("c", "=", 3))

        assert to_wire(domain) == ["&", "&", ["a", "=", 1], ["b", "=", 2], ["c", "=", 3]]

    def test_or_and_not(self):
        """Test nested connectives keep their position."""
        domain = Or(Predicate("a", "=", 1), Not(Predicate("b", "=", False)))

        assert to_wire(domain) == ["|", ["a", "=", 1], "!", ["b", "=", False]]

    def test_single_operand_and(self):
        """Test an AND of one operand needs no marker."""
        assert to_wire(And(Predicate("a", "=", 1))) == [["a", "=", 1]]

    def test_none_matches_all(self):
        """Test a missing domain is an empty list."""
        assert to_wire(None) == []

    def test_prefixed_tree(self):
        """Test prefixing applies to every leaf."""
        domain = And(Predicate("a", "=", 1), Not(Predicate("b", "=", 2))).prefixed("rel")

        assert to_wire(domain) == ["&", ["rel.a", "=", 1], "!", ["rel.b", "=", 2]]


class TestHelpers:
    """Tests for all_of and date_range."""

    def test_all_of_skips_none(self):
        """Test None operands are dropped."""
        assert all_of(None, Predicate("a", "=", 1), None) == Predicate("a", "=", 1)
        assert all_of(None, None) is None

    def test_date_range_both_bounds(self):
        """Test both bounds produce an inclusive range."""
        assert to_wire(date_range("invoice_date", "2025-01-01", "2025-01-31")) == [
            "&",
            ["invoice_date", ">=", "2025-01-01"],
            ["invoice_date", "<=", "2025-01-31"],
        ]

    def test_date_range_open(self):
        """Test missing bounds are open."""
        assert to_wire(date_range("invoice_date", None, "2025-01-31")) == [["invoice_date", "<=", "2025-01-31"]]
        assert date_range("invoice_date", None, None) is None


class TestFromWire:
    """Tests for rebuilding trees from prefix notation."""

    def test_explicit_markers(self):
        """Test markers rebuild the same tree."""
        items = ["|", ["a", "=", 1], "!", ["b", "=", 2]]

        assert from_wire(items) == Or(Predicate("a", "=", 1), Not(Predicate("b", "=", 2)))

    def test_implicit_and(self):
        """Test top-level operands without a marker are AND-ed."""
        items = [["a", "=", 1], ["b", "=", 2]]

        assert from_wire(items) == And(Predicate("a", "=", 1), Predicate("b", "=", 2))

    def test_empty(self):
        """Test an empty domain parses to None."""
        assert from_wire([]) is None

    def test_flatten_then_parse_matches_semantics(self):
        """Test a flattened n-ary AND re-parses to an equivalent nested AND."""
        flat = to_wire(And(Predicate("a", "=", 1), Predicate("b", "=", 2), Predicate("c", "=", 3)))

        assert to_wire(from_wire(flat)) == flat

    @pytest.mark.parametrize("items", [
        ["&", ["a", "=", 1]],
        ["!"],
        ["?", ["a", "=", 1]],
        [["a", "="]],
    ])
    def test_invalid(self, items):
        """Test incomplete or unknown elements are rejected."""
        with pytest.raises(ValueError):
            from_wire(items)
