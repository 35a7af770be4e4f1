"""Conversation compaction and code selection."""
