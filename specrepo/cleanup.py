"""Deterministic release of stores, sessions and other held resources.

``Store`` and ``UnitOfWork`` hold engines and sessions. Both extend
``CleanupMixin`` so they can be used with ``async with`` and released
exactly once.
"""

import asyncio
import inspect
import typing as t

from .logger import get_logger

_RELEASE_METHODS = ("aclose", "close", "dispose")


class CleanupMixin:
    """Async lifecycle shared by components that own resources.

    Subclasses release their own state in ``_cleanup_resources``. Extra
    resources passed to ``register_resource`` are released afterwards, most
    recently registered first.
    """

    def __init__(self) -> None:
        self._resources: list[t.Any] = []
        self._cleaned_up = False
        self._cleanup_lock: asyncio.Lock | None = None

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned_up

    def register_resource(self, resource: t.Any) -> None:
        if not any(resource is held for held in self._resources):
            self._resources.append(resource)

    async def cleanup_resource(self, resource: t.Any) -> None:
        """Release one resource through its ``aclose``, ``close`` or ``dispose``."""
        if resource is None:
            return
        for method_name in _RELEASE_METHODS:
            release = getattr(resource, method_name, None)
            if release is None:
                continue
            result = release()
            if inspect.isawaitable(result):
                await result
            return

    async def _cleanup_resources(self) -> None:
        """Release component-specific state. Overridden by subclasses."""

    async def cleanup(self) -> None:
        """Release everything once. Failures are logged, never raised."""
        if self._cleanup_lock is None:
            self._cleanup_lock = asyncio.Lock()

        async with self._cleanup_lock:
            if self._cleaned_up:
                return

            errors: list[str] = []
            try:
                await self._cleanup_resources()
            except Exception as e:
                errors.append(f"{type(self).__name__}: {e}")

            while self._resources:
                resource = self._resources.pop()
                try:
                    await self.cleanup_resource(resource)
                except Exception as e:
                    errors.append(f"{type(resource).__name__}: {e}")

            self._cleaned_up = True
            if errors:
                get_logger("cleanup", component=type(self).__name__).warning(
                    f"Cleanup finished with errors: {'; '.join(errors)}",
                )

    async def __aenter__(self) -> t.Self:
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.cleanup()
