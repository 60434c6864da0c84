"""Tests for conversation validation and upstream body shape checks."""

import pytest

from perplexity_mcp_server.errors import ShapeError
from perplexity_mcp_server.validation import (
    MISSING_CHOICES,
    MISSING_CONTENT,
    NOT_AN_OBJECT,
    Message,
    parse_chat_completion,
    validate_messages,
)


def test_valid_messages_are_returned_in_order():
    out = validate_messages(
        [{"role": "system", "content": "be brief"}, {"role": "user", "content": ""}],
        "perplexity_ask",
    )
    assert out == [Message("system", "be brief"), Message("user", "")]
    assert out[0].to_dict() == {"role": "system", "content": "be brief"}


@pytest.mark.parametrize("value", [None, "hello", {"role": "user", "content": "x"}, 42])
def test_non_list_messages_name_the_tool(value):
    with pytest.raises(ShapeError) as exc:
        validate_messages(value, "perplexity_reason")
    assert str(exc.value) == "Invalid arguments for perplexity_reason: 'messages' must be an array"
    assert "index" not in str(exc.value)


@pytest.mark.parametrize(
    "bad, fragment",
    [
        ("text", "must be an object"),
        (None, "must be an object"),
        ({"content": "x"}, "'role' must be a string"),
        ({"role": "", "content": "x"}, "'role' must be a string"),
        ({"role": 7, "content": "x"}, "'role' must be a string"),
        ({"role": "user"}, "'content' must be a string"),
        ({"role": "user", "content": None}, "'content' must be a string"),
        ({"role": "user", "content": ["x"]}, "'content' must be a string"),
    ],
)
def test_first_offending_index_is_reported(bad, fragment):
    messages = [{"role": "user", "content": "ok"}, {"role": "assistant", "content": "ok"}, bad, "also bad"]
    with pytest.raises(ShapeError) as exc:
        validate_messages(messages, "perplexity_ask")
    assert str(exc.value) == f"Invalid message at index 2: {fragment}"


def test_parse_chat_completion_success_keeps_metadata():
    result = parse_chat_completion(
        {
            "id": "cmpl-1",
            "model": "sonar-pro",
            "created": 1700000000,
            "choices": [{"message": {"content": "hi", "role": "assistant"}, "finish_reason": "stop", "index": 0}],
            "citations": ["https://a.example", "https://b.example"],
            "usage": {"total_tokens": 12},
        }
    )
    assert result.ok
    completion = result.value
    assert completion.choices[0].content == "hi"
    assert completion.choices[0].finish_reason == "stop"
    assert completion.citations == ["https://a.example", "https://b.example"]
    assert completion.usage == {"total_tokens": 12}
    assert completion.id == "cmpl-1"


@pytest.mark.parametrize(
    "body",
    [{}, {"choices": []}, {"choices": None}, {"choices": "nope"}],
)
def test_missing_or_empty_choices(body):
    result = parse_chat_completion(body)
    assert not result.ok
    assert result.failure == MISSING_CHOICES


@pytest.mark.parametrize("body", [[], ["choices"], "text", 3, None])
def test_non_object_body_is_not_a_completion(body):
    result = parse_chat_completion(body)
    assert not result.ok
    assert result.failure == NOT_AN_OBJECT


@pytest.mark.parametrize(
    "choices",
    [
        [{}],
        [{"message": None}],
        [{"message": {}}],
        [{"message": {"content": 5}}],
        [{"message": {"content": "ok"}}, {"message": {"role": "assistant"}}],
        ["not-a-choice"],
    ],
)
def test_missing_message_content(choices):
    result = parse_chat_completion({"choices": choices})
    assert not result.ok
    assert result.failure == MISSING_CONTENT


def test_non_list_citations_are_dropped():
    result = parse_chat_completion({"choices": [{"message": {"content": "r"}}], "citations": "not-an-array"})
    assert result.ok
    assert result.value.citations == []
