"""LLM integration: chat client core and provider clients."""
