"""
Backend Registry - Fixed, externally configured set of backends.

Features:
- Read-only view of backend descriptors for the decision engine
- Availability = descriptor has a live adapter (configured credentials)
- Per-backend concurrency slots (local model serialises generations)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from switchyard.config.errors import BackendUnavailableError

from .contracts import BackendAdapter
from .models import Backend, BackendCapabilities

if TYPE_CHECKING:
    from switchyard.config import BackendConfig, Settings

logger = logging.getLogger(__name__)

__all__ = ["BackendRegistry", "backend_from_config"]


def backend_from_config(config: BackendConfig) -> Backend:
    """Translate a configured backend into its registry descriptor."""
    return Backend(
        id=config.id,
        model=config.model,
        base_latency_ms=config.base_latency_ms,
        cost_per_1k_tokens=config.cost_per_1k_tokens,
        capabilities=BackendCapabilities(
            supports_streaming=config.supports_streaming,
            max_context_tokens=config.max_context_tokens,
            max_concurrency=config.max_concurrency,
        ),
        is_local=config.is_local,
        trust_rank=config.trust_rank,
    )


class BackendRegistry:
    """
    Registry of backend descriptors and their adapters.

    Example:
        >>> registry = BackendRegistry.from_settings(get_settings())
        >>> registry.available_ids()
        ['local', 'claude']
        >>> async with registry.slot("local"):
        ...     response = await registry.adapter("local").query(request)
    """

    def __init__(
        self,
        backends: list[Backend],
        adapters: Mapping[str, BackendAdapter],
    ) -> None:
        """
        Initialize registry.

        Args:
            backends: All configured backend descriptors
            adapters: Adapters for the backends that are usable right now
        """
        self._backends: dict[str, Backend] = {b.id: b for b in backends}
        self._adapters: dict[str, BackendAdapter] = dict(adapters)
        self._slots: dict[str, asyncio.Semaphore] = {}

        locals_ = [b for b in backends if b.is_local]
        if len(locals_) != 1:
            raise ValueError(
                f"Exactly one local backend must be configured, found {len(locals_)}"
            )
        self._local_id = locals_[0].id

        unknown = set(self._adapters) - set(self._backends)
        if unknown:
            raise ValueError(f"Adapters without descriptors: {sorted(unknown)}")

    @classmethod
    def from_settings(cls, settings: Settings) -> BackendRegistry:
        """Build descriptors and adapters from application settings."""
        from switchyard.adapters.gemini import GeminiBackend, GeminiConfig
        from switchyard.adapters.ollama import OllamaBackend
        from switchyard.adapters.openai import OpenAICompatibleBackend

        backends: list[Backend] = []
        adapters: dict[str, BackendAdapter] = {}

        for config in settings.backends:
            backends.append(backend_from_config(config))
            api_key = settings.api_key_for(config)

            if config.kind == "ollama":
                adapters[config.id] = OllamaBackend(
                    base_url=config.base_url or settings.ollama_url,
                    model=config.model,
                    timeout=settings.backend_timeout_seconds,
                    backend_id=config.id,
                    embedding_model=settings.ollama_embedding_model,
                )
            elif config.api_key_setting and not api_key:
                logger.info("Backend %s has no credentials, marked unavailable", config.id)
            elif config.kind == "openai":
                adapters[config.id] = OpenAICompatibleBackend(
                    base_url=config.base_url or "https://api.openai.com/v1",
                    api_key=api_key,
                    model=config.model,
                    timeout=settings.backend_timeout_seconds,
                    backend_id=config.id,
                )
            elif config.kind == "gemini":
                adapters[config.id] = GeminiBackend(
                    GeminiConfig(
                        model=config.model,
                        api_key=api_key,
                        rate_limit_rpm=settings.gemini_rate_limit_rpm,
                        timeout_seconds=int(settings.backend_timeout_seconds),
                    ),
                    backend_id=config.id,
                )

        logger.info(
            "Backend registry: %d configured, available=%s",
            len(backends),
            sorted(adapters),
        )
        return cls(backends, adapters)

    @property
    def local_id(self) -> str:
        return self._local_id

    def local(self) -> Backend:
        """Descriptor of the on-device backend."""
        return self._backends[self._local_id]

    def get(self, backend_id: str) -> Backend:
        """Descriptor for ``backend_id``."""
        try:
            return self._backends[backend_id]
        except KeyError:
            raise BackendUnavailableError(backend_id, f"Unknown backend: {backend_id}") from None

    def all(self) -> list[Backend]:
        return list(self._backends.values())

    def is_available(self, backend_id: str) -> bool:
        return backend_id in self._adapters

    def available_ids(self) -> list[str]:
        """Ids of usable backends, in configuration order."""
        return [bid for bid in self._backends if bid in self._adapters]

    def cloud_ids(self) -> list[str]:
        """Ids of usable non-local backends, in configuration order."""
        return [bid for bid in self.available_ids() if bid != self._local_id]

    def most_trusted_cloud(self) -> Backend | None:
        """Available cloud backend with the highest trust rank."""
        clouds = [self._backends[bid] for bid in self.cloud_ids()]
        if not clouds:
            return None
        return max(clouds, key=lambda b: b.trust_rank)

    def adapter(self, backend_id: str) -> BackendAdapter:
        """Adapter for ``backend_id``."""
        adapter = self._adapters.get(backend_id)
        if adapter is None:
            raise BackendUnavailableError(backend_id, f"Backend not available: {backend_id}")
        return adapter

    @asynccontextmanager
    async def slot(self, backend_id: str) -> AsyncIterator[None]:
        """
        Hold one generation slot on ``backend_id``.

        Backends with ``max_concurrency`` set serialise through a semaphore;
        unbounded backends run fully in parallel.
        """
        limit = self.get(backend_id).capabilities.max_concurrency
        if not limit:
            yield
            return

        semaphore = self._slots.get(backend_id)
        if semaphore is None:
            semaphore = asyncio.Semaphore(limit)
            self._slots[backend_id] = semaphore

        if semaphore.locked():
            logger.debug("Waiting for %s generation slot", backend_id)
        async with semaphore:
            yield

    async def close(self) -> None:
        """Close every adapter."""
        for backend_id, adapter in self._adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning("Failed to close backend %s: %s", backend_id, e)
