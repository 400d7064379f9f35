"""Remote LLM access: prompts, the HTTP gateway, failure classification and usage stats."""
