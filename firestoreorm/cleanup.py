"""Resource cleanup for store clients."""

import asyncio
import inspect
import typing as t

from .logger import logger


class CleanupMixin:
    """Mixin tracking client objects that must be closed on shutdown."""

    _cleanup_methods = ("close", "aclose", "shutdown")

    def __init__(self) -> None:
        self._resources: list[t.Any] = []
        self._cleaned_up = False
        self._cleanup_lock: asyncio.Lock | None = None

    def register_resource(self, resource: t.Any) -> None:
        if resource not in self._resources:
            self._resources.append(resource)

    async def cleanup_resource(self, resource: t.Any) -> None:
        """Close ``resource`` with the first cleanup method it exposes."""
        if resource is None:
            return

        for method_name in self._cleanup_methods:
            method = getattr(resource, method_name, None)
            if method is None:
                continue
            result = method()
            if inspect.isawaitable(result):
                await result
            logger.debug(f"Cleaned up {type(resource).__name__} using {method_name}()")
            return

    async def cleanup(self) -> None:
        """Clean up all registered resources once."""
        if self._cleanup_lock is None:
            self._cleanup_lock = asyncio.Lock()

        async with self._cleanup_lock:
            if self._cleaned_up:
                return

            errors = []
            for resource in self._resources.copy():
                try:
                    await self.cleanup_resource(resource)
                except Exception as e:
                    errors.append(f"{type(resource).__name__}: {e}")

            self._resources.clear()
            self._cleaned_up = True

            if errors:
                logger.warning(f"Resource cleanup errors: {'; '.join(errors)}")

    async def __aenter__(self) -> t.Self:
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.cleanup()
