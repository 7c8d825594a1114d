"""
Ollama Adapter - Local model backend and embedding provider.
"""

from .client import OllamaBackend

__all__ = ["OllamaBackend"]
