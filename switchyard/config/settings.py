"""
Settings - Application configuration using Pydantic Settings.

Loads from environment variables and .env files. The backend registry is
configured here as a fixed list; the orchestration core only reads it.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendConfig(BaseModel):
    """Static description of one language-model backend."""

    id: str
    kind: Literal["ollama", "openai", "gemini"]
    model: str
    base_url: str | None = None
    # Name of the Settings field holding the credential (None = no key needed)
    api_key_setting: str | None = None
    base_latency_ms: float = 1000.0
    cost_per_1k_tokens: float = 0.0
    supports_streaming: bool = True
    max_context_tokens: int = 8192
    max_concurrency: int | None = None
    trust_rank: int = 0
    is_local: bool = False

    model_config = {"frozen": True}


def _default_backends() -> list[BackendConfig]:
    return [
        BackendConfig(
            id="local",
            kind="ollama",
            model="llama3.2",
            base_latency_ms=250,
            cost_per_1k_tokens=0.0,
            max_context_tokens=8192,
            max_concurrency=1,
            is_local=True,
        ),
        BackendConfig(
            id="claude",
            kind="openai",
            model="claude-sonnet-4-5",
            base_url="https://api.anthropic.com/v1",
            api_key_setting="anthropic_api_key",
            base_latency_ms=1500,
            cost_per_1k_tokens=0.0025,
            max_context_tokens=200_000,
            trust_rank=3,
        ),
        BackendConfig(
            id="gpt4",
            kind="openai",
            model="gpt-4o",
            base_url="https://api.openai.com/v1",
            api_key_setting="openai_api_key",
            base_latency_ms=2000,
            cost_per_1k_tokens=0.0075,
            max_context_tokens=128_000,
            trust_rank=2,
        ),
        BackendConfig(
            id="gemini",
            kind="gemini",
            model="gemini-2.0-flash",
            api_key_setting="gemini_api_key",
            base_latency_ms=1800,
            cost_per_1k_tokens=0.0003,
            max_context_tokens=1_000_000,
            trust_rank=1,
        ),
    ]


def _default_priorities() -> dict[str, list[str]]:
    return {
        "coding": ["claude", "gpt4", "gemini"],
        "creative": ["gpt4", "claude", "gemini"],
        "math": ["gemini", "gpt4", "claude"],
        "general": ["claude", "gpt4", "gemini"],
    }


class Settings(BaseSettings):
    """Application settings."""

    # Paths
    data_dir: Path = Path("data")
    # Defaults to data_dir/switchyard.db
    db_path: Path | None = None

    # Ollama (local backend)
    ollama_url: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"
    embeddings_enabled: bool = False

    # Cloud credentials (BYOK); a backend without its key is not available
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    gemini_rate_limit_rpm: int = 60
    backend_timeout_seconds: float = 120.0

    # Backend registry
    backends: list[BackendConfig] = Field(default_factory=_default_backends)
    routing_priorities: dict[str, list[str]] = Field(default_factory=_default_priorities)
    default_cloud_backend: str = "claude"

    # Decision thresholds
    local_threshold: float = 0.4
    cloud_threshold: float = 0.7
    preference_bias: float = 0.1
    use_meta_prompt: bool = False
    iterative_local_retries: int = 1

    # Quality gate
    quality_pass_threshold: float = 0.70
    quality_coherence_min: float = 0.60
    quality_completeness_min: float = 0.65
    quality_relevance_min: float = 0.70
    quality_accuracy_min: float = 0.65
    quality_safety_min: float = 0.95

    # Streaming monitor
    stream_min_chunks: int = 5
    stream_check_interval: int = 3
    stream_coherence_threshold: float = 0.6
    stream_repetition_threshold: int = 3
    stream_min_quality: float = 0.5
    stream_default_min_confidence: float = 0.6

    # Response cache
    cache_max_entries: int = 1000
    cache_ttl_seconds: int = 7 * 24 * 3600
    cache_similarity_threshold: float = 0.85
    cache_sweep_interval_seconds: int = 3600
    cache_persistent: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    api_rate_limit_rpm: int = 60
    api_cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def api_key_for(self, backend: BackendConfig) -> str | None:
        """Resolve the credential configured for a backend."""
        if backend.api_key_setting is None:
            return None
        return getattr(self, backend.api_key_setting, None)

    @property
    def database_path(self) -> Path:
        """SQLite file for the durable cache and audit log."""
        return self.db_path or self.data_dir / "switchyard.db"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
