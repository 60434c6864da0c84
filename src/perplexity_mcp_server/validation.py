"""Input validation for tool arguments and shape checks for upstream bodies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from .errors import ShapeError

T = TypeVar("T")

MISSING_CHOICES = "missing or empty choices array"
MISSING_CONTENT = "missing message content"
NOT_AN_OBJECT = "response body is not a JSON object"


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def validate_messages(messages: Any, tool_name: str) -> list[Message]:
    """Check a conversation before it leaves the process.

    Raises ``ShapeError`` naming the tool when ``messages`` is not a list, or
    naming the 0-based index of the first malformed element otherwise.
    """
    if not isinstance(messages, list):
        raise ShapeError(f"Invalid arguments for {tool_name}: 'messages' must be an array")

    out: list[Message] = []
    for index, msg in enumerate(messages):
        if not isinstance(msg, dict):
            raise ShapeError(f"Invalid message at index {index}: must be an object")
        role = msg.get("role")
        if not role or not isinstance(role, str):
            raise ShapeError(f"Invalid message at index {index}: 'role' must be a string")
        content = msg.get("content")
        if not isinstance(content, str):
            raise ShapeError(f"Invalid message at index {index}: 'content' must be a string")
        out.append(Message(role=role, content=content))
    return out


@dataclass
class ParseResult(Generic[T]):
    """Outcome of checking an upstream body: a typed value or a failure reason."""

    value: Optional[T] = None
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, reason: str) -> "ParseResult[T]":
        return cls(failure=reason)


@dataclass
class Choice:
    content: str
    role: Optional[str] = None
    finish_reason: Optional[str] = None
    index: Optional[int] = None


@dataclass
class ChatCompletion:
    choices: list[Choice]
    citations: list[str] = field(default_factory=list)
    usage: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    model: Optional[str] = None
    created: Optional[float] = None


def parse_chat_completion(data: Any) -> ParseResult[ChatCompletion]:
    if not isinstance(data, dict):
        return ParseResult.fail(NOT_AN_OBJECT)
    raw_choices = data.get("choices")
    if not isinstance(raw_choices, list) or not raw_choices:
        return ParseResult.fail(MISSING_CHOICES)

    choices: list[Choice] = []
    for raw in raw_choices:
        if not isinstance(raw, dict):
            return ParseResult.fail(MISSING_CONTENT)
        message = raw.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            return ParseResult.fail(MISSING_CONTENT)
        role = message.get("role")
        finish_reason = raw.get("finish_reason")
        index = raw.get("index")
        choices.append(
            Choice(
                content=message["content"],
                role=role if isinstance(role, str) else None,
                finish_reason=finish_reason if isinstance(finish_reason, str) else None,
                index=index if isinstance(index, int) and not isinstance(index, bool) else None,
            )
        )

    citations = data.get("citations")
    usage = data.get("usage")
    created = data.get("created")
    return ParseResult.success(
        ChatCompletion(
            choices=choices,
            # Non-list citations are ignored rather than rejected.
            citations=[str(c) for c in citations] if isinstance(citations, list) else [],
            usage=dict(usage) if isinstance(usage, dict) else {},
            id=data.get("id") if isinstance(data.get("id"), str) else None,
            model=data.get("model") if isinstance(data.get("model"), str) else None,
            created=created if isinstance(created, (int, float)) and not isinstance(created, bool) else None,
        )
    )
