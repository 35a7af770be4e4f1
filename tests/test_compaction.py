"""Tests for history serialization and selection decay."""

import pytest

from fragmentchat.agent.compactor import (
    Compactor,
    format_selection_block,
    format_selection_reference,
    to_provider_messages,
)
from fragmentchat.config.schema import CompactionConfig, Config
from fragmentchat.session.messages import (
    CodeContent,
    CodeSelectionContent,
    Conversation,
    ImageContent,
    LineRange,
    Role,
    TextContent,
    Turn,
)

APP_CODE = "def handler():\n    return 42\n# end"
REFERENCE = "[Previously selected python code from app.py, lines 3-5]"
BLOCK = (
    "[Selected code from app.py, lines 3-5, python]:\n"
    "```python\ndef handler():\n    return 42\n# end\n```"
)


def _selection(code=APP_CODE, file_name="app.py", language="python", start=3, end=5):
    return CodeSelectionContent(
        code=code,
        file_name=file_name,
        language=language,
        line_range=LineRange(start, end),
    )


def _conversation(length: int, selection_at: int | None = None) -> Conversation:
    """Alternating user/assistant turns with an optional selection in one turn."""
    conversation = Conversation()
    for i in range(length):
        role = Role.user if i % 2 == 0 else Role.assistant
        turn = Turn(role=role, content=[TextContent(f"message {i}")])
        if i == selection_at:
            turn.append(_selection())
        conversation.append(turn)
    return conversation


def _texts(message: dict) -> list[str]:
    return [block.get("text", block.get("image")) for block in message["content"]]


# ── scenarios ───────────────────────────────────────────────────


class TestScenarios:
    def test_old_selection_collapses_to_reference(self):
        messages = to_provider_messages(_conversation(8, selection_at=0))
        assert messages[0]["content"][1] == {"type": "text", "text": REFERENCE}

    def test_recent_selection_keeps_full_block(self):
        messages = to_provider_messages(_conversation(8, selection_at=3))
        assert messages[3]["content"][1] == {"type": "text", "text": BLOCK}
        assert "    return 42" in messages[3]["content"][1]["text"]


# ── decay boundary ──────────────────────────────────────────────


class TestDecayBoundary:
    @pytest.mark.parametrize("index", range(10))
    def test_boundary_over_conversation(self, index):
        total = 10
        messages = to_provider_messages(_conversation(total, selection_at=index))
        rendered = messages[index]["content"][-1]["text"]
        if total - index <= 6:
            assert rendered == BLOCK
        else:
            assert rendered == REFERENCE

    def test_exactly_six_from_end_is_kept(self):
        messages = to_provider_messages(_conversation(7, selection_at=1))
        assert messages[1]["content"][-1]["text"] == BLOCK

    def test_seven_from_end_is_collapsed(self):
        messages = to_provider_messages(_conversation(7, selection_at=0))
        assert messages[0]["content"][-1]["text"] == REFERENCE

    def test_is_decayed(self):
        c = Compactor()
        assert c.is_decayed(6) is False
        assert c.is_decayed(7) is True

    def test_custom_threshold(self):
        c = Compactor(selection_decay_messages=2)
        messages = c.to_provider_messages(_conversation(4, selection_at=1))
        assert messages[1]["content"][-1]["text"] == REFERENCE

    def test_from_config(self):
        config = Config(compaction=CompactionConfig(selection_decay_messages=0))
        c = Compactor.from_config(config)
        messages = c.to_provider_messages(_conversation(1, selection_at=0))
        assert messages[0]["content"][-1]["text"] == REFERENCE

    def test_default_threshold(self):
        assert Compactor().selection_decay_messages == Compactor.SELECTION_DECAY_MESSAGES == 6


# ── reordering ──────────────────────────────────────────────────


class TestCacheOrdering:
    def test_selections_move_last_stably(self):
        turn = Turn(role=Role.user, content=[
            TextContent("first"),
            _selection(file_name="a.py"),
            CodeContent("print('code')"),
            ImageContent("data:image/png;base64,AA=="),
            _selection(file_name="b.py"),
            TextContent("last"),
        ])
        message = to_provider_messages([turn])[0]

        texts = _texts(message)
        assert texts[:4] == [
            "first",
            "print('code')",
            "data:image/png;base64,AA==",
            "last",
        ]
        assert texts[4].startswith("[Selected code from a.py")
        assert texts[5].startswith("[Selected code from b.py")

    def test_input_turn_not_mutated(self):
        content = [_selection(), TextContent("after")]
        turn = Turn(role=Role.user, content=list(content))
        to_provider_messages([turn])
        assert turn.content == content

    def test_decayed_selections_also_last(self):
        conversation = _conversation(8)
        conversation[0].content.insert(0, _selection())
        message = to_provider_messages(conversation)[0]
        assert _texts(message) == ["message 0", REFERENCE]


# ── rendering ───────────────────────────────────────────────────


class TestRendering:
    def test_code_renders_as_text(self):
        turn = Turn(role=Role.assistant, content=[CodeContent("x = 1")])
        assert to_provider_messages([turn])[0]["content"] == [{"type": "text", "text": "x = 1"}]

    def test_image_keeps_image_type(self):
        turn = Turn(role=Role.user, content=[ImageContent("data:image/jpeg;base64,/9j/")])
        assert to_provider_messages([turn])[0]["content"] == [
            {"type": "image", "image": "data:image/jpeg;base64,/9j/"},
        ]

    def test_empty_turn_kept(self):
        turns = [Turn(role=Role.user), Turn(role=Role.assistant, content=[TextContent("hi")])]
        messages = to_provider_messages(turns)
        assert messages[0] == {"role": "user", "content": []}
        assert len(messages) == 2

    def test_ui_state_not_serialized(self):
        turn = Turn(
            role=Role.assistant,
            content=[TextContent("done")],
            structured_object={"code": "print(1)"},
            result={"stdout": "1"},
        )
        message = to_provider_messages([turn])[0]
        assert set(message) == {"role", "content"}
        assert message["role"] == "assistant"

    def test_empty_conversation(self):
        assert to_provider_messages(Conversation()) == []

    def test_unknown_item_is_contract_violation(self):
        turn = Turn(role=Role.user, content=[object()])
        with pytest.raises(TypeError):
            to_provider_messages([turn])

    def test_format_helpers(self):
        selection = _selection()
        assert format_selection_reference(selection) == REFERENCE
        assert format_selection_block(selection) == BLOCK


# ── purity ──────────────────────────────────────────────────────


class TestPurity:
    def test_idempotent(self):
        conversation = _conversation(9, selection_at=2)
        conversation[8].append(_selection(start=1, end=1))
        c = Compactor()
        assert c.to_provider_messages(conversation) == c.to_provider_messages(conversation)

    def test_accepts_any_iterable(self):
        conversation = _conversation(3, selection_at=1)
        assert to_provider_messages(iter(conversation.turns)) == to_provider_messages(conversation)

    def test_estimate_tokens(self):
        c = Compactor(chars_per_token=4)
        messages = [{"role": "user", "content": [{"type": "text", "text": "abcdefgh"}]}]
        assert c.estimate_tokens(messages) == 4 + 2
