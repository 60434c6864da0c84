"""Tests for reasoning-trace stripping, citation blocks and search result rendering."""

from perplexity_mcp_server.formatting import (
    NO_RESULTS,
    append_citations,
    format_search_results,
    strip_thinking_tokens,
)


def test_strip_removes_single_span():
    assert strip_thinking_tokens("<think>plan</think>Answer") == "Answer"


def test_strip_removes_multiple_and_multiline_spans():
    text = "<think>one\ntwo\n</think>Hello <think>x</think>world\n"
    assert strip_thinking_tokens(text) == "Hello world"


def test_strip_is_minimal_and_keeps_nested_brackets():
    text = "<think>a <b> c</think>keep<think>d</think> end"
    assert strip_thinking_tokens(text) == "keep end"


def test_strip_without_tags_only_trims():
    assert strip_thinking_tokens("  plain answer \n") == "plain answer"
    assert strip_thinking_tokens("") == ""


def test_strip_trims_to_empty():
    assert strip_thinking_tokens("   <think>Remove me</think>   ") == ""


def test_unclosed_and_orphan_tags_pass_through_unchanged():
    assert strip_thinking_tokens("Start <think>unclosed content") == "Start <think>unclosed content"
    assert strip_thinking_tokens("Some </think> content here") == "Some </think> content here"
    assert strip_thinking_tokens("  <think>open  ") == "  <think>open  "


def test_citations_block_appended_in_order():
    out = append_citations("Answer", ["https://a.example", "https://b.example", "https://c.example"])
    assert out == (
        "Answer\n\nCitations:\n"
        "[1] https://a.example\n"
        "[2] https://b.example\n"
        "[3] https://c.example\n"
    )


def test_no_citations_leaves_text_alone():
    assert append_citations("Answer", []) == "Answer"


def test_format_search_results_full_entry():
    formatted = format_search_results(
        {
            "results": [
                {
                    "title": "Test Result 1",
                    "url": "https://example.com/1",
                    "snippet": "This is a test snippet",
                    "date": "2025-01-01",
                },
                {"title": "Test Result 2", "url": "https://example.com/2", "snippet": "Another snippet"},
            ]
        }
    )
    assert formatted == (
        "Found 2 search results:\n\n"
        "1. **Test Result 1**\n"
        "   URL: https://example.com/1\n"
        "   This is a test snippet\n"
        "   Date: 2025-01-01\n"
        "\n"
        "2. **Test Result 2**\n"
        "   URL: https://example.com/2\n"
        "   Another snippet\n"
        "\n"
    )


def test_format_search_results_empty_and_missing():
    assert format_search_results({"results": []}) == "Found 0 search results:\n\n"
    assert format_search_results({}) == NO_RESULTS
    assert format_search_results({"results": "nope"}) == NO_RESULTS
    assert format_search_results(None) == NO_RESULTS


def test_null_required_fields_render_null_and_optional_are_omitted():
    formatted = format_search_results(
        {
            "results": [
                {"title": None, "url": "https://example.com", "snippet": None},
                {"title": "Valid", "url": None, "snippet": "snippet", "date": None},
            ]
        }
    )
    assert "1. **null**" in formatted
    assert "   URL: null" in formatted
    assert "Valid" in formatted
    assert "undefined" not in formatted
    assert "None" not in formatted
    assert "Date:" not in formatted


def test_empty_strings_and_extra_fields():
    formatted = format_search_results({"results": [{"title": "", "url": "", "snippet": "", "date": ""}]})
    assert formatted.startswith("Found 1 search results:")
    assert "Date:" not in formatted

    formatted = format_search_results(
        {"results": [{"title": "Test", "url": "https://example.com", "unexpectedField": "x", "other": 12345}]}
    )
    assert "unexpectedField" not in formatted
    assert "12345" not in formatted
