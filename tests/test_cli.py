"""Tests for the command-line interface."""

import json

from typer.testing import CliRunner

from fragmentchat import __version__
from fragmentchat.cli.commands import _summarize_content, app

runner = CliRunner()


def _write_conversation(path, selection_turn: int, length: int = 8):
    turns = []
    for i in range(length):
        content = [{"type": "text", "text": f"message {i}"}]
        if i == selection_turn:
            content.insert(0, {
                "type": "codeSelection",
                "code": "x = 1",
                "fileName": "app.py",
                "language": "python",
                "lineRange": {"start": 3, "end": 5},
                "tokenEstimate": 2,
            })
        turns.append({"role": "user" if i % 2 == 0 else "assistant", "content": content})
    path.write_text(json.dumps(turns))


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"v{__version__}" in result.output


class TestRender:
    def test_old_selection_is_referenced(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        path = tmp_path / "conversation.json"
        _write_conversation(path, selection_turn=0)

        result = runner.invoke(app, ["render", str(path)])
        assert result.exit_code == 0
        assert "Previously selected" in result.output
        assert "[Selected code from" not in result.output

    def test_recent_selection_is_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        path = tmp_path / "conversation.json"
        _write_conversation(path, selection_turn=6)

        result = runner.invoke(app, ["render", str(path), "--tokens"])
        assert result.exit_code == 0
        assert "[Selected code from app.py" in result.output
        assert "tokens" in result.output

    def test_unreadable_file(self, tmp_path):
        result = runner.invoke(app, ["render", str(tmp_path / "missing.json")])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_malformed_turns(self, tmp_path):
        path = tmp_path / "conversation.json"
        path.write_text(json.dumps([{"role": "robot", "content": []}]))
        result = runner.invoke(app, ["render", str(path)])
        assert result.exit_code == 1


class TestHistory:
    def test_requires_filter(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 1
        assert "required" in result.output


class TestSummarizeContent:
    def test_empty(self):
        assert _summarize_content(None) == ""

    def test_items(self):
        content = [
            {"type": "text", "text": "look at this"},
            {"type": "image", "image": "data:image/png;base64,AA=="},
            {"type": "codeSelection", "fileName": "app.py", "lineRange": {"start": 3, "end": 5}},
        ]
        assert _summarize_content(content) == "look at this [image] [app.py:3-5]"
