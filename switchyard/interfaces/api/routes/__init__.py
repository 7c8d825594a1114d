"""
API Routes.
"""

from . import cache, chat, health

__all__ = ["health", "chat", "cache"]
