"""Flatten conversation history into provider messages."""

from typing import Any, Iterable

from loguru import logger

from fragmentchat.agent.tokens import CHARS_PER_TOKEN, estimate_messages_tokens
from fragmentchat.session.messages import (
    CodeContent,
    CodeSelectionContent,
    ContentItem,
    ImageContent,
    TextContent,
    Turn,
)


class Compactor:
    """
    Serializes a conversation into the provider payload.

    Two strategies keep the payload small and cache friendly:

    1. Within each turn, code selections are moved after all other content
       so the stable part of the prompt forms a reusable prefix.
    2. Selections in turns further than ``selection_decay_messages`` from
       the end collapse into a one-line reference instead of the full code.
    """

    SELECTION_DECAY_MESSAGES = 6  # 3 exchanges of user + assistant

    def __init__(
        self,
        selection_decay_messages: int | None = None,
        chars_per_token: int = CHARS_PER_TOKEN,
    ):
        if selection_decay_messages is None:
            selection_decay_messages = self.SELECTION_DECAY_MESSAGES
        self.selection_decay_messages = selection_decay_messages
        self.chars_per_token = chars_per_token

    @classmethod
    def from_config(cls, config) -> "Compactor":
        return cls(
            selection_decay_messages=config.compaction.selection_decay_messages,
            chars_per_token=config.compaction.chars_per_token,
        )

    def to_provider_messages(self, turns: Iterable[Turn]) -> list[dict[str, Any]]:
        """Build provider messages for every turn, oldest first."""
        turns = list(turns)
        total = len(turns)
        decayed = 0

        messages = []
        for index, turn in enumerate(turns):
            distance = total - index
            content = []
            for item in self._order_for_cache(turn.content):
                if isinstance(item, CodeSelectionContent) and self.is_decayed(distance):
                    decayed += 1
                content.append(self._render(item, distance))
            messages.append({"role": turn.role.value, "content": content})

        logger.debug(
            f"Serialized {total} turns ({decayed} selections collapsed to references)"
        )
        return messages

    def is_decayed(self, distance_from_end: int) -> bool:
        """Whether a selection this many messages from the end is collapsed."""
        return distance_from_end > self.selection_decay_messages

    def estimate_tokens(self, messages: list[dict[str, Any]]) -> int:
        """Estimate the size of a provider payload."""
        return estimate_messages_tokens(messages, chars_per_token=self.chars_per_token)

    @staticmethod
    def _order_for_cache(content: list[ContentItem]) -> list[ContentItem]:
        """Stable partition: everything else first, selections last."""
        stable = [c for c in content if not isinstance(c, CodeSelectionContent)]
        selections = [c for c in content if isinstance(c, CodeSelectionContent)]
        return stable + selections

    def _render(self, item: ContentItem, distance: int) -> dict[str, str]:
        if isinstance(item, (TextContent, CodeContent)):
            return {"type": "text", "text": item.text}
        if isinstance(item, ImageContent):
            return {"type": "image", "image": item.image}
        if isinstance(item, CodeSelectionContent):
            if self.is_decayed(distance):
                return {"type": "text", "text": format_selection_reference(item)}
            return {"type": "text", "text": format_selection_block(item)}
        raise TypeError(f"Unsupported content item: {type(item).__name__}")


def format_selection_reference(selection: CodeSelectionContent) -> str:
    """Short pointer to a selection that has aged out of the context."""
    lines = selection.line_range
    return (
        f"[Previously selected {selection.language} code from "
        f"{selection.file_name}, lines {lines.start}-{lines.end}]"
    )


def format_selection_block(selection: CodeSelectionContent) -> str:
    """Full fenced code block with file and line metadata."""
    lines = selection.line_range
    return (
        f"[Selected code from {selection.file_name}, lines {lines.start}-{lines.end}, "
        f"{selection.language}]:\n"
        f"```{selection.language}\n{selection.code}\n```"
    )


def to_provider_messages(turns: Iterable[Turn]) -> list[dict[str, Any]]:
    """Serialize with the default decay threshold."""
    return Compactor().to_provider_messages(turns)
