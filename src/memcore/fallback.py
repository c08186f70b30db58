# src/memcore/fallback.py
"""
Fallback controller.

Sends one turn through an ordered chain of backends. A backend failure moves
the same, unmodified history to the next backend; cancellation and
non-backend errors are never absorbed.
"""

import logging
from typing import List, Sequence, Tuple

from .backends.base import BaseBackend
from .exceptions import BackendError, ConfigError
from .models import BackendResponse, ConversationMessage

logger = logging.getLogger(__name__)


def is_retryable(error: BaseException) -> bool:
    """True for errors another backend might not have (any :class:`BackendError`)."""
    return isinstance(error, BackendError)


class FallbackController:
    """
    Ordered chain of backends with sticky fallback.

    Once a backend other than the primary has answered, later turns start
    with it; the primary is then tried only after it.
    """

    def __init__(self, backends: Sequence[BaseBackend]):
        if not backends:
            raise ConfigError("FallbackController needs at least one backend.")
        self._backends: List[BaseBackend] = list(backends)
        self._active: BaseBackend = self._backends[0]

    @property
    def primary(self) -> BaseBackend:
        return self._backends[0]

    @property
    def active_backend(self) -> BaseBackend:
        """The backend that answered last (the primary until a fallback happens)."""
        return self._active

    @property
    def has_fallen_back(self) -> bool:
        return self._active is not self._backends[0]

    def ordered_backends(self) -> List[BaseBackend]:
        return [self._active] + [b for b in self._backends if b is not self._active]

    is_retryable = staticmethod(is_retryable)

    async def send(self, history: Sequence[ConversationMessage]) -> Tuple[BackendResponse, BaseBackend]:
        """
        Sends ``history`` to the first backend that answers.

        Returns:
            The response and the backend that produced it.

        Raises:
            BackendError: The first backend's error, once every backend has failed.
            asyncio.CancelledError: Propagated immediately, no further backend is tried.
        """
        errors: List[BackendError] = []
        for backend in self.ordered_backends():
            try:
                response = await backend.send(history)
            except BackendError as e:
                errors.append(e)
                logger.warning(f"Backend '{backend.get_name()}' failed, trying next backend if any: {e}")
                continue
            if backend is not self._active:
                logger.warning(
                    f"Falling back from backend '{self._active.get_name()}' to '{backend.get_name()}' for this session."
                )
                self._active = backend
            return response, backend

        logger.error(f"All {len(self._backends)} backend(s) failed.")
        raise errors[0]
