# src/memcore/backends/manager.py
"""
Backend Manager for memcore.

Builds backend instances from the ``[backends.*]`` configuration sections and
orders them into the fallback chain given by ``[fallback] order``.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Type

from ..config.models import MemCoreConfig
from ..exceptions import BackendConfigurationError, ConfigError
from .anthropic_backend import AnthropicBackend
from .azure_openai import AzureOpenAIBackend
from .base import BaseBackend
from .openai_backend import OpenAIBackend

logger = logging.getLogger(__name__)

BACKEND_MAP: Dict[str, Type[BaseBackend]] = {
    "azure_openai": AzureOpenAIBackend,
    "openai": OpenAIBackend,
    "anthropic": AnthropicBackend,
}


class BackendManager:
    """
    Owns the configured backend instances.

    A section whose ``type`` is unknown or whose construction fails is logged
    and skipped. Missing credentials do not prevent construction; such a
    backend fails its own validation when called, and the chain moves on.
    """

    def __init__(self, config: MemCoreConfig):
        self._config = config
        self._backends: Dict[str, BaseBackend] = {}
        self._load_configured_backends()

    def _load_configured_backends(self) -> None:
        log_raw_payloads = self._config.memcore.log_raw_payloads
        for section_name, settings in self._config.backends.items():
            backend_type = settings.type.lower()
            backend_cls = BACKEND_MAP.get(backend_type)
            if backend_cls is None:
                logger.warning(
                    f"Backend type '{backend_type}' (section '{section_name}') is not supported. "
                    f"Known types: {list(BACKEND_MAP)}. Skipping."
                )
                continue
            try:
                backend = backend_cls(settings, name=section_name, log_raw_payloads=log_raw_payloads)
            except (ValueError, TypeError, ConfigError) as e:
                logger.error(f"Failed to initialize backend '{section_name}' (type '{backend_type}'): {e}", exc_info=True)
                continue
            self._backends[section_name] = backend
            try:
                backend.validate_config()
                logger.info(f"Backend '{section_name}' (type '{backend_type}') initialized.")
            except BackendConfigurationError as e:
                logger.info(f"Backend '{section_name}' initialized but not usable until configured: {e.detail}")

    def get_backend(self, name: str) -> BaseBackend:
        try:
            return self._backends[name]
        except KeyError:
            raise ConfigError(
                f"Backend '{name}' is not configured or failed to initialize. Loaded backends: {list(self._backends)}"
            ) from None

    def get_available_backends(self) -> List[str]:
        return list(self._backends)

    def build_chain(self, order: Optional[List[str]] = None) -> List[BaseBackend]:
        """
        Returns backends in fallback order, primary first.

        Args:
            order: Section names to use instead of ``[fallback] order``.

        Raises:
            ConfigError: If no listed backend could be loaded.
        """
        names = order if order is not None else self._config.fallback.order
        chain = []
        for name in names:
            backend = self._backends.get(name)
            if backend is None:
                logger.warning(f"Backend '{name}' listed in fallback order is not loaded. Skipping.")
                continue
            chain.append(backend)
        if not chain:
            raise ConfigError(f"No usable backend in fallback order {names}.")
        logger.debug(f"Backend chain: {[b.get_name() for b in chain]}")
        return chain

    async def close_backends(self) -> None:
        """Closes all backends; errors are logged per backend."""
        results = await asyncio.gather(
            *(backend.close() for backend in self._backends.values()), return_exceptions=True
        )
        for name, result in zip(self._backends, results):
            if isinstance(result, Exception):
                logger.error(f"Error closing backend '{name}': {result}", exc_info=result)
