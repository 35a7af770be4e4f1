"""Approximate token estimation for context management."""

import math

CHARS_PER_TOKEN = 4  # Cross-model estimate (EN text/code/JSON)
IMAGE_TOKENS = 800  # ~800x600 image, Anthropic-style (w*h)/750 rounded up
MESSAGE_OVERHEAD = 4  # Role, separators


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Estimate token count from character count, rounding up."""
    return math.ceil(len(text) / chars_per_token)


def estimate_messages_tokens(
    messages: list[dict],
    chars_per_token: int = CHARS_PER_TOKEN,
    image_tokens: int = IMAGE_TOKENS,
) -> int:
    """Estimate total tokens for a provider message list."""
    total = 0
    for msg in messages:
        total += MESSAGE_OVERHEAD
        content = msg.get("content", "")

        if isinstance(content, str):
            total += estimate_tokens(content, chars_per_token)
        elif isinstance(content, list):
            for block in content:
                if block.get("type") == "text":
                    total += estimate_tokens(block.get("text", ""), chars_per_token)
                elif block.get("type") == "image":
                    total += image_tokens

    return total
