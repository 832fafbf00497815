import typing as t
from bevy import Inject, get_container


class Depends:
    """Dependency registry backed by the bevy container.

    firestoreorm registers its settings objects here at import time so that
    repositories and stores created without explicit settings share one
    instance per process.
    """

    @staticmethod
    def set(class_: t.Any, instance: t.Any = None, module: str | None = None) -> t.Any:
        """Register a class/instance in the dependency container.

        Returns the instance that was registered.
        """
        if instance is None:
            instance = class_()
        get_container().add(class_, instance, qualifier=module)
        return instance

    @staticmethod
    def get_sync(category: t.Any, module: str | None = None) -> t.Any:
        """Get a registered dependency instance."""
        result = get_container().get(category, qualifier=module)
        if isinstance(result, tuple):
            if len(result) == 1:
                return result[0]
            msg = f"Dependency '{category}' not found in container"
            raise RuntimeError(msg)
        return result

    async def get(self, category: t.Any, module: str | None = None) -> t.Any:
        return Depends.get_sync(category, module)


depends = Depends()

__all__ = ["Depends", "Inject", "depends", "get_container"]
