"""Prompt playground: multi-provider chat sessions and streaming gateway."""
