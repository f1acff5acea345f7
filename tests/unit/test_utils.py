"""Tests for shared helpers in plainly.core.utils."""

import pytest

from plainly.core.utils import parse_structured_output, strip_code_fences, summary_headline


class TestStripCodeFences:
    def test_removes_json_fence(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text_untouched(self) -> None:
        assert strip_code_fences("  hello  ") == "hello"


class TestParseStructuredOutput:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('{"gist": "x"}', {"gist": "x"}),
            ('```json\n{"gist": "x"}\n```', {"gist": "x"}),
            ({"gist": "x"}, {"gist": "x"}),
            ("not json", "not json"),
            ("[1, 2]", "[1, 2]"),
            (None, None),
        ],
    )
    def test_parse(self, raw, expected) -> None:
        assert parse_structured_output(raw) == expected


class TestSummaryHeadline:
    def test_prefers_gist(self) -> None:
        assert summary_headline({"gist": " Launch ", "one_line": "Other"}) == "Launch"

    def test_falls_back_to_one_line(self) -> None:
        assert summary_headline({"one_line": "Short"}) == "Short"

    def test_string_summary(self) -> None:
        assert summary_headline("  Plain summary ") == "Plain summary"

    def test_nothing_usable(self) -> None:
        assert summary_headline({"bullets": []}) is None
        assert summary_headline(None) is None
