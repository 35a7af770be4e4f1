"""fragmentchat - chat history compaction for a code assistant."""

__version__ = "0.1.0"
__logo__ = "🧩"
