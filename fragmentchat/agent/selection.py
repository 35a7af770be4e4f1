"""Turn a user's code selection into a context attachment."""

from dataclasses import dataclass

from fragmentchat.session.messages import CodeSelectionContent, LineRange


@dataclass
class FragmentFile:
    """A named source file shown to the user."""

    name: str
    content: str


def compute_line_range(full_text: str, selected_text: str) -> LineRange:
    """Locate ``selected_text`` in ``full_text`` and return its line span.

    Uses the first occurrence. Falls back to lines 1-1 when the selection
    cannot be found.
    """
    position = full_text.find(selected_text)
    if position == -1:
        return LineRange(1, 1)

    start = full_text.count("\n", 0, position) + 1
    end = start + selected_text.count("\n")
    return LineRange(start, end)


def language_for(file_name: str) -> str:
    """Language tag for a file: its extension, or ``text``."""
    return file_name.rsplit(".", 1)[-1] or "text"


def capture_selection(file: FragmentFile, selected_text: str) -> CodeSelectionContent | None:
    """Build a selection attachment from raw selected text.

    Returns None for an empty (or whitespace-only) selection.
    """
    code = selected_text.strip()
    if not code:
        return None

    return CodeSelectionContent(
        code=code,
        file_name=file.name,
        language=language_for(file.name),
        line_range=compute_line_range(file.content, code),
    )
