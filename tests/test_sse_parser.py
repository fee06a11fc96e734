"""Tests for the SSE frame parser."""

from pixia.llm.sse import DONE, SSEParser


def _feed_all(lines: list[str]) -> list[str]:
    parser = SSEParser()
    payloads: list[str] = []
    for line in lines:
        payloads.extend(parser.feed(line))
    return payloads


class TestSSEParser:
    def test_single_event_flushes_on_blank_line(self):
        parser = SSEParser()
        assert parser.feed('data: {"a":1}') == []
        assert parser.feed("") == ['{"a":1}']

    def test_each_data_line_is_its_own_payload(self):
        payloads = _feed_all(["data: one", "data: two", ""])
        assert payloads == ["one", "two"]

    def test_payload_count_matches_complete_data_lines(self):
        lines = [
            "data: a", "",
            ": keepalive", "",
            "event: message", "data: b", "data: c", "",
            "data: trailing",
        ]
        payloads = _feed_all(lines)
        assert payloads == ["a", "b", "c"]

    def test_trailing_event_needs_finish(self):
        parser = SSEParser()
        parser.feed("data: partial")
        assert parser.pending == 1
        assert parser.finish() == ["partial"]
        assert parser.finish() == []

    def test_done_sentinel_passes_through(self):
        assert _feed_all(["data: [DONE]", ""]) == [DONE]

    def test_prefix_without_space(self):
        assert _feed_all(["data:{}", ""]) == ["{}"]

    def test_only_one_leading_space_is_stripped(self):
        assert _feed_all(["data:   x", ""]) == ["  x"]

    def test_whitespace_only_line_counts_as_blank(self):
        assert _feed_all(["data: x", "   "]) == ["x"]

    def test_non_data_fields_are_ignored(self):
        assert _feed_all(["id: 7", "retry: 100", "event: ping", ""]) == []

    def test_blank_lines_without_data_yield_nothing(self):
        assert _feed_all(["", "", ""]) == []
