"""
Tests for core/serialization.py - Safe Serialization.

Covers:
- Plain JSON values
- Circular references
- Exceptions and unknown objects
- Property: safe_stringify never raises and always returns JSON text
"""
import json

from hypothesis import given, settings, strategies as st

from core.serialization import CIRCULAR_MARKER, safe_stringify


class TestSafeStringify:
    """Tests for safe_stringify."""

    def test_plain_mapping(self):
        assert json.loads(safe_stringify({"a": 1, "b": [True, None]})) == {"a": 1, "b": [True, None]}

    def test_string_is_json_quoted(self):
        assert safe_stringify("hello") == '"hello"'

    def test_circular_dict(self):
        payload = {"name": "loop"}
        payload["self"] = payload

        assert json.loads(safe_stringify(payload)) == {"name": "loop", "self": CIRCULAR_MARKER}

    def test_circular_list(self):
        items = [1]
        items.append(items)

        assert json.loads(safe_stringify(items)) == [1, CIRCULAR_MARKER]

    def test_shared_reference_is_not_circular(self):
        shared = {"x": 1}
        assert json.loads(safe_stringify({"a": shared, "b": shared})) == {
            "a": {"x": 1},
            "b": {"x": 1},
        }

    def test_exception(self):
        rendered = json.loads(safe_stringify({"error": ValueError("bad port")}))
        assert rendered == {"error": {"name": "ValueError", "message": "bad port"}}

    def test_unknown_object_uses_str(self):
        class Port:
            def __str__(self):
                return "port:5000"

        assert json.loads(safe_stringify({"port": Port()})) == {"port": "port:5000"}

    def test_broken_str_does_not_raise(self):
        class Hostile:
            def __str__(self):
                raise RuntimeError("no")

        rendered = safe_stringify(Hostile())
        assert "Hostile" in rendered

    def test_exception_with_broken_str(self):
        class UnprintableError(Exception):
            def __str__(self):
                raise RuntimeError("no str")

        rendered = json.loads(safe_stringify({"error": UnprintableError()}))

        assert rendered["error"]["name"] == "UnprintableError"
        assert "UnprintableError object at" in rendered["error"]["message"]

    def test_bare_exception_with_broken_str(self):
        class UnprintableError(Exception):
            def __str__(self):
                raise RuntimeError("no str")

        assert json.loads(safe_stringify(UnprintableError()))["name"] == "UnprintableError"

    def test_key_with_broken_str(self):
        class UnprintableKey:
            def __str__(self):
                raise RuntimeError("no key")

        rendered = json.loads(safe_stringify({UnprintableKey(): 1}))

        (key,) = rendered.keys()
        assert "UnprintableKey object at" in key
        assert rendered[key] == 1

    def test_non_string_keys_rendered(self):
        assert json.loads(safe_stringify({5000: "port"})) == {"5000": "port"}


json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=20,
)


class TestSafeStringifyProperties:
    """Property tests for safe_stringify."""

    @given(json_values)
    @settings(max_examples=100, deadline=None)
    def test_json_values_survive(self, value):
        assert json.loads(safe_stringify(value)) == value

    @given(st.lists(st.integers(), min_size=1, max_size=5))
    @settings(max_examples=50, deadline=None)
    def test_self_reference_never_raises(self, items):
        holder = {"items": items}
        holder["holder"] = holder
        rendered = json.loads(safe_stringify(holder))
        assert rendered["holder"] == CIRCULAR_MARKER
