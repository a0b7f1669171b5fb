"""
Pytest test module for JSON Pointer parsing and resolution.

Test Categories:
- TestParse: root forms, escapes, invalid pointers
- TestSegments: canonical array indices and the append marker
- TestPrefix: segment-wise prefix matching
- TestResolve: lookups through objects and arrays
"""

import pytest

from dashforge.services.json_pointer import (
    APPEND_MARKER,
    InvalidPointerError,
    JsonPointer,
    Segment,
    resolve,
)


class TestParse:
    """Tests for JsonPointer.parse."""

    @pytest.mark.parametrize("text", ["", "/"])
    def test_root_forms(self, text: str) -> None:
        """Both "" and "/" address the document root."""
        pointer = JsonPointer.parse(text)
        assert pointer.is_root, f"{text!r} should parse to the root"
        assert str(pointer) == ""

    def test_segments(self) -> None:
        pointer = JsonPointer.parse("/ui/tabs/0")
        assert pointer.keys() == ("ui", "tabs", "0")

    def test_escapes_are_decoded(self) -> None:
        """~1 decodes to / and ~0 to ~, in that order."""
        pointer = JsonPointer.parse("/a~1b/c~0d/~01")
        assert pointer.keys() == ("a/b", "c~d", "~1")

    def test_str_round_trips_escapes(self) -> None:
        text = "/labels/a~1b/~0x"
        assert str(JsonPointer.parse(text)) == text

    def test_missing_leading_slash_rejected(self) -> None:
        with pytest.raises(InvalidPointerError):
            JsonPointer.parse("kpis/0")

    def test_bad_escape_rejected(self) -> None:
        with pytest.raises(InvalidPointerError):
            JsonPointer.parse("/kpis/~2")

    def test_non_string_rejected(self) -> None:
        with pytest.raises(InvalidPointerError):
            JsonPointer.parse(None)  # type: ignore[arg-type]

    def test_invalid_pointer_is_value_error(self) -> None:
        assert issubclass(InvalidPointerError, ValueError)


class TestSegments:
    """Tests for Segment index handling."""

    @pytest.mark.parametrize("key,expected", [("0", 0), ("12", 12)])
    def test_canonical_index(self, key: str, expected: int) -> None:
        assert Segment(key).index == expected

    @pytest.mark.parametrize("key", ["012", "-1", "1.5", "a", ""])
    def test_non_canonical_index(self, key: str) -> None:
        assert Segment(key).index is None, f"{key!r} must not be an array index"

    def test_append_marker(self) -> None:
        segment = Segment(APPEND_MARKER)
        assert segment.is_append
        assert segment.index is None


class TestPrefix:
    """Tests for JsonPointer.startswith (segment-wise)."""

    def test_equal_pointer_is_prefix(self) -> None:
        p = JsonPointer.parse("/tenant_id")
        assert p.startswith(JsonPointer.parse("/tenant_id"))

    def test_descendant_matches(self) -> None:
        assert JsonPointer.parse("/tenant_id/name").startswith(JsonPointer.parse("/tenant_id"))

    def test_sibling_with_common_text_does_not_match(self) -> None:
        """"/tenant_idx" is not under "/tenant_id"."""
        assert not JsonPointer.parse("/tenant_idx").startswith(JsonPointer.parse("/tenant_id"))

    def test_root_is_prefix_of_everything(self) -> None:
        assert JsonPointer.parse("/kpis/0").startswith(JsonPointer.parse(""))

    def test_parent_and_last(self) -> None:
        pointer = JsonPointer.parse("/funnel/stages/2")
        assert str(pointer.parent) == "/funnel/stages"
        assert pointer.last.key == "2"


class TestResolve:
    """Tests for resolve()."""

    def test_resolves_nested_value(self, sample_document) -> None:
        found, value = resolve(sample_document, JsonPointer.parse("/ui/tabs/2"))
        assert found
        assert value == "Details"

    def test_root(self, sample_document) -> None:
        found, value = resolve(sample_document, JsonPointer.parse(""))
        assert found
        assert value is sample_document

    @pytest.mark.parametrize("path", [
        "/missing",
        "/kpis/5",
        "/kpis/-",
        "/title/x",
        "/kpis/01",
    ])
    def test_missing_paths(self, sample_document, path: str) -> None:
        found, value = resolve(sample_document, JsonPointer.parse(path))
        assert not found, f"{path} should not resolve"
        assert value is None

    def test_null_value_is_found(self) -> None:
        found, value = resolve({"a": None}, JsonPointer.parse("/a"))
        assert found
        assert value is None
