"""
Gemini Models - Configuration for the Gemini backend.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GeminiConfig(BaseModel):
    """Configuration for Gemini backend."""

    model: str = Field(default="gemini-2.0-flash")
    # None = rely on Application Default Credentials
    api_key: str | None = Field(default=None, repr=False)
    max_output_tokens: int = Field(default=8192, gt=0)
    timeout_seconds: int = Field(default=120, gt=0)
    rate_limit_rpm: int = Field(default=60, gt=0)

    model_config = {"frozen": True}
