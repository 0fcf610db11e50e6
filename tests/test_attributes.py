# tests/test_attributes.py
"""Tests for the attribute model and its merge policy."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from nrtrace.attributes import Attributes, coerce_value

keys = st.text(min_size=1, max_size=8)
values = st.one_of(
    st.text(max_size=8),
    st.integers(),
    st.floats(allow_nan=False),
    st.booleans(),
)


class TestCoercion:
    def test_supported_types_pass_through(self) -> None:
        assert coerce_value("x") == "x"
        assert coerce_value(3) == 3
        assert coerce_value(1.5) == 1.5
        assert coerce_value(True) is True

    def test_unsupported_values_are_stored_as_repr(self) -> None:
        assert coerce_value(None) == "None"
        assert coerce_value([1, 2]) == "[1, 2]"
        assert coerce_value({"a": 1}) == "{'a': 1}"


class TestAttributes:
    def test_set_rejects_empty_key(self) -> None:
        with pytest.raises(ValueError):
            Attributes().set("", 1)

    def test_set_rejects_non_string_key(self) -> None:
        with pytest.raises(TypeError):
            Attributes().set(1, 1)  # type: ignore[arg-type]

    def test_type_change_under_same_key_is_permitted(self) -> None:
        """A string may be overwritten by an integer (permissive policy)."""
        attrs = Attributes({"k": "one"})
        attrs.merge({"k": 1})
        assert attrs["k"] == 1
        assert isinstance(attrs["k"], int)

    def test_first_insertion_order_is_kept(self) -> None:
        attrs = Attributes([("a", 1), ("b", 2)])
        attrs.merge({"a": 3, "c": 4})
        assert list(attrs) == ["a", "b", "c"]
        assert attrs.to_dict() == {"a": 3, "b": 2, "c": 4}

    def test_copy_is_independent(self) -> None:
        attrs = Attributes({"a": 1})
        clone = attrs.copy()
        clone.set("a", 2)
        assert attrs["a"] == 1

    def test_equality_with_plain_mapping(self) -> None:
        assert Attributes({"a": 1}) == {"a": 1}
        assert Attributes({"a": 1}) != {"a": 2}


class TestMergeProperties:
    @given(pairs=st.lists(st.tuples(keys, values), max_size=20))
    def test_last_write_wins(self, pairs: list[tuple[str, object]]) -> None:
        """Final value per key is the value from the chronologically last write."""
        attrs = Attributes()
        for key, value in pairs:
            attrs.merge({key: value})
        expected: dict[str, object] = {}
        for key, value in pairs:
            expected[key] = value
        assert attrs.to_dict() == expected

    @given(items=st.dictionaries(keys, values, max_size=10))
    def test_reapplying_identical_pairs_is_idempotent(self, items: dict[str, object]) -> None:
        attrs = Attributes(items)
        before = attrs.to_dict()
        attrs.merge(items)
        attrs.merge(items)
        assert attrs.to_dict() == before
        assert list(attrs) == list(before)
