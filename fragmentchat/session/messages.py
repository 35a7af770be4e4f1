"""Conversation content model: content items, turns and conversations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Literal, Union

from fragmentchat.agent.tokens import estimate_tokens


class Role(str, Enum):
    """Author of a turn."""

    user = "user"
    assistant = "assistant"


@dataclass(frozen=True)
class LineRange:
    """1-based inclusive line span inside a file."""

    start: int
    end: int

    def __post_init__(self):
        if self.start < 1 or self.end < self.start:
            raise ValueError(f"Invalid line range {self.start}-{self.end}")


@dataclass(frozen=True)
class TextContent:
    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class CodeContent:
    """A code block. Identical to text for the provider, distinct for the UI."""

    text: str
    type: Literal["code"] = field(default="code", init=False)


@dataclass(frozen=True)
class ImageContent:
    image: str  # data URL from the image encoder, passed through as-is
    type: Literal["image"] = field(default="image", init=False)


@dataclass(frozen=True)
class CodeSelectionContent:
    """A span of code the user attached as context."""

    code: str
    file_name: str
    language: str
    line_range: LineRange
    type: Literal["codeSelection"] = field(default="codeSelection", init=False)

    @property
    def token_estimate(self) -> int:
        """Coarse size of the selection, always derived from ``code``."""
        return estimate_tokens(self.code)


ContentItem = Union[TextContent, CodeContent, ImageContent, CodeSelectionContent]


def content_to_dict(item: ContentItem) -> dict[str, Any]:
    """Convert a content item to its camelCase wire form."""
    if isinstance(item, (TextContent, CodeContent)):
        return {"type": item.type, "text": item.text}
    if isinstance(item, ImageContent):
        return {"type": item.type, "image": item.image}
    if isinstance(item, CodeSelectionContent):
        return {
            "type": item.type,
            "code": item.code,
            "fileName": item.file_name,
            "language": item.language,
            "lineRange": {"start": item.line_range.start, "end": item.line_range.end},
            "tokenEstimate": item.token_estimate,
        }
    raise TypeError(f"Unsupported content item: {type(item).__name__}")


def content_from_dict(data: dict[str, Any]) -> ContentItem:
    """Build a content item from its wire form.

    ``tokenEstimate`` is ignored; it is recomputed from ``code``.
    """
    kind = data.get("type")
    if kind == "text":
        return TextContent(data["text"])
    if kind == "code":
        return CodeContent(data["text"])
    if kind == "image":
        return ImageContent(data["image"])
    if kind == "codeSelection":
        line_range = data["lineRange"]
        return CodeSelectionContent(
            code=data["code"],
            file_name=data["fileName"],
            language=data["language"],
            line_range=LineRange(int(line_range["start"]), int(line_range["end"])),
        )
    raise ValueError(f"Unknown content type: {kind!r}")


@dataclass
class Turn:
    """
    One conversational message.

    ``structured_object`` and ``result`` are opaque UI state (a partially
    streamed fragment and its execution result). They are never sent to
    the model.
    """

    role: Role
    content: list[ContentItem] = field(default_factory=list)
    structured_object: Any = None
    result: Any = None

    def __post_init__(self):
        self.role = Role(self.role)

    def append(self, item: ContentItem) -> None:
        """Append a content item. Items are never reordered or removed."""
        self.content.append(item)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": [content_to_dict(c) for c in self.content],
        }
        if self.structured_object is not None:
            data["object"] = self.structured_object
        if self.result is not None:
            data["result"] = self.result
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        return cls(
            role=Role(data["role"]),
            content=[content_from_dict(c) for c in data.get("content") or []],
            structured_object=data.get("object"),
            result=data.get("result"),
        )


@dataclass
class Conversation:
    """
    Append-only sequence of turns for one chat session.

    A turn's index is only used to compute recency during serialization;
    the durable identity of a conversation is the id owned by the store.
    """

    turns: list[Turn] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.turns)

    def __getitem__(self, index: int) -> Turn:
        return self.turns[index]

    def append(self, turn: Turn) -> Turn:
        self.turns.append(turn)
        return turn

    def add_user_message(
        self,
        text: str,
        images: list[str] | tuple[str, ...] = (),
        selections: list[CodeSelectionContent] | tuple[CodeSelectionContent, ...] = (),
    ) -> Turn:
        """Append a user turn: text first, then images, then attached selections."""
        turn = Turn(role=Role.user)
        turn.append(TextContent(text))
        for image in images:
            turn.append(ImageContent(image))
        for selection in selections:
            turn.append(selection)
        return self.append(turn)

    def add_assistant_message(
        self,
        text: str = "",
        structured_object: Any = None,
        result: Any = None,
    ) -> Turn:
        turn = Turn(
            role=Role.assistant,
            structured_object=structured_object,
            result=result,
        )
        if text:
            turn.append(TextContent(text))
        return self.append(turn)

    def update_latest_assistant(self, **updates: Any) -> Turn:
        """Apply streaming updates to the most recent assistant turn.

        Only ``structured_object`` and ``result`` may change.
        """
        if not self.turns or self.turns[-1].role != Role.assistant:
            raise ValueError("The latest turn is not an assistant turn")

        unknown = set(updates) - {"structured_object", "result"}
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        turn = self.turns[-1]
        for name, value in updates.items():
            setattr(turn, name, value)
        return turn

    def to_list(self) -> list[dict[str, Any]]:
        return [turn.to_dict() for turn in self.turns]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> "Conversation":
        return cls(turns=[Turn.from_dict(t) for t in data])
