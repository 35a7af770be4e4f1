"""Conversation model and persistence."""
