"""
Adapters - External service integrations.

All vendor calls are wrapped here to isolate domains from third-party changes.

- llm: uniform chat contract, backend registry, cancellation
- ollama: on-device backend and embeddings
- openai: OpenAI-compatible chat completions
- gemini: Google Gemini
- sqlite: durable cache store and audit log
"""

__all__ = ["llm", "ollama", "openai", "gemini", "sqlite"]
