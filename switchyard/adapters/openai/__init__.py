"""
OpenAI Adapter - Chat completions backend for OpenAI-compatible providers.
"""

from .client import OpenAICompatibleBackend, parse_sse_line

__all__ = ["OpenAICompatibleBackend", "parse_sse_line"]
