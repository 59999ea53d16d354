"""Provider-neutral conversation messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from switchyard.errors import RequestError

Role = Literal["system", "user", "assistant", "tool"]
_ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool"})


@dataclass(frozen=True)
class TextPart:
    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class ImagePart:
    """An image given by URL or base64 data."""

    image: str
    mime_type: str | None = None
    type: Literal["image"] = "image"


@dataclass(frozen=True)
class FilePart:
    """A document given by URL or base64 data."""

    data: str
    mime_type: str
    filename: str | None = None
    type: Literal["file"] = "file"


@dataclass(frozen=True)
class ToolCallPart:
    """A tool invocation requested by the model in an assistant turn."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    type: Literal["tool-call"] = "tool-call"


@dataclass(frozen=True)
class ToolResultPart:
    """The caller-supplied result of a previous tool call."""

    tool_call_id: str
    tool_name: str
    result: Any
    is_error: bool = False
    type: Literal["tool-result"] = "tool-result"


Part = TextPart | ImagePart | FilePart | ToolCallPart | ToolResultPart

_ALLOWED_PARTS: dict[str, tuple[type, ...]] = {
    "system": (TextPart, ImagePart, FilePart),
    "user": (TextPart, ImagePart, FilePart),
    "assistant": (TextPart, ImagePart, FilePart, ToolCallPart),
    "tool": (ToolResultPart,),
}


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    ``content`` is either plain text or an ordered tuple of parts. Shapes a
    role cannot carry (tool calls outside assistant turns, tool results
    outside tool turns) are rejected at construction.
    """

    role: Role
    content: str | tuple[Part, ...] = ""

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise RequestError(
                f"Unknown message role: {self.role!r}",
                hint="Use one of: system, user, assistant, tool.",
            )
        if isinstance(self.content, str):
            if self.role == "tool":
                raise RequestError(
                    "tool messages must carry tool-result parts",
                    hint="Pass content=[ToolResultPart(...)].",
                )
            return
        content = tuple(self.content)
        allowed = _ALLOWED_PARTS[self.role]
        for part in content:
            if not isinstance(part, allowed):
                raise RequestError(
                    f"{self.role} messages cannot contain "
                    f"{getattr(part, 'type', type(part).__name__)!r} parts",
                )
        object.__setattr__(self, "content", content)

    @property
    def parts(self) -> tuple[Part, ...]:
        """Content as parts; plain text becomes a single `TextPart`."""
        if isinstance(self.content, str):
            return (TextPart(self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))


def _get(data: dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def _coerce_part(data: Any) -> Part:
    if isinstance(data, (TextPart, ImagePart, FilePart, ToolCallPart, ToolResultPart)):
        return data
    if isinstance(data, str):
        return TextPart(data)
    if not isinstance(data, dict):
        raise RequestError(f"Message part must be a dict, got {type(data).__name__}")

    kind = data.get("type")
    try:
        if kind == "text":
            return TextPart(text=str(data["text"]))
        if kind == "image":
            return ImagePart(
                image=data["image"], mime_type=_get(data, "mime_type", "mimeType")
            )
        if kind == "file":
            return FilePart(
                data=_get(data, "data", "file"),
                mime_type=_get(data, "mime_type", "mimeType"),
                filename=data.get("filename"),
            )
        if kind == "tool-call":
            args = data.get("args", {})
            if not isinstance(args, dict):
                raise RequestError("tool-call args must be a dict")
            return ToolCallPart(
                tool_call_id=_get(data, "tool_call_id", "toolCallId"),
                tool_name=_get(data, "tool_name", "toolName"),
                args=args,
            )
        if kind == "tool-result":
            return ToolResultPart(
                tool_call_id=_get(data, "tool_call_id", "toolCallId"),
                tool_name=_get(data, "tool_name", "toolName"),
                result=data.get("result"),
                is_error=bool(_get(data, "is_error", "isError", False)),
            )
    except KeyError as e:
        raise RequestError(f"{kind} part is missing field {e.args[0]!r}") from e
    raise RequestError(
        f"Unknown message part type: {kind!r}",
        hint="Supported part types: text, image, file, tool-call, tool-result.",
    )


def coerce_message(data: Message | dict[str, Any]) -> Message:
    """Return *data* as a `Message`, converting plain dicts."""
    if isinstance(data, Message):
        return data
    if not isinstance(data, dict) or not isinstance(data.get("role"), str):
        raise RequestError(
            "messages must be Message objects or dicts with a string 'role'",
            hint="Pass messages=[{'role': 'user', 'content': 'hi'}].",
        )
    content = data.get("content", "")
    if content is None:
        content = ""
    if not isinstance(content, str):
        if not isinstance(content, (list, tuple)):
            raise RequestError("message content must be a string or a list of parts")
        content = tuple(_coerce_part(p) for p in content)
    return Message(role=data["role"], content=content)


def coerce_messages(
    items: list[Message | dict[str, Any]] | tuple[Message | dict[str, Any], ...],
) -> tuple[Message, ...]:
    """Normalize a message sequence into a tuple of `Message` objects."""
    if isinstance(items, (str, bytes)) or not isinstance(items, (list, tuple)):
        raise RequestError(
            "messages must be a list",
            hint="Pass messages=[{'role': 'user', 'content': 'hi'}].",
        )
    return tuple(coerce_message(m) for m in items)
