"""
Gemini Adapter - Google Gemini chat backend.

This is the only place that calls the Gemini SDK.
"""

from .client import GeminiBackend
from .models import GeminiConfig

__all__ = [
    "GeminiBackend",
    "GeminiConfig",
]
