"""askterm: a terminal LLM client with per-shell conversations and an agent mode."""
