"""
Ownership of native engine resources.

ScopedHandle wraps one resource together with the function that releases it.
EngineResources owns the model and context handles of a session and tears
them down in reverse acquisition order.
"""

import logging
from typing import Callable, Generic, Optional, TypeVar

from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.engine.base import ContextHandle, EngineBackend, ModelHandle
from llama_chat_lite.errors import ConfigurationError, EngineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScopedHandle(Generic[T]):
    """Owns a resource and releases it exactly once.

    Handles are move-only: copying raises TypeError, and detach() hands the
    resource to a new owner without releasing it.

    Example:
        >>> with ScopedHandle(open_thing(), close_thing, name="thing") as h:
        ...     use(h.get())
    """

    def __init__(self, resource: T, release: Callable[[T], None], name: str = "handle") -> None:
        if resource is None:
            raise EngineError(f"cannot wrap a null {name}")
        self._resource: Optional[T] = resource
        self._release = release
        self.name = name

    def get(self) -> T:
        """Borrow the resource.

        Raises:
            EngineError: If the handle has been released or detached.
        """
        if self._resource is None:
            raise EngineError(f"{self.name} has been released")
        return self._resource

    def detach(self) -> T:
        """Give up ownership without releasing."""
        resource = self.get()
        self._resource = None
        return resource

    def release(self) -> None:
        """Release the resource. Safe to call more than once."""
        resource, self._resource = self._resource, None
        if resource is not None:
            logger.debug("Releasing %s", self.name)
            self._release(resource)

    @property
    def released(self) -> bool:
        return self._resource is None

    def __bool__(self) -> bool:
        return self._resource is not None

    def __enter__(self) -> "ScopedHandle[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __copy__(self):
        raise TypeError(f"{self.name} handles cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError(f"{self.name} handles cannot be copied")

    def __reduce__(self):
        raise TypeError(f"{self.name} handles cannot be pickled")


def _close(resource) -> None:
    resource.close()


class EngineResources:
    """Model and context handles of one session.

    The model is acquired first and released last. Loading a new model
    releases any existing context and model before the new one is loaded, so
    a failed load leaves nothing behind.
    """

    def __init__(self, backend: EngineBackend) -> None:
        self.backend = backend
        self._model: Optional[ScopedHandle[ModelHandle]] = None
        self._context: Optional[ScopedHandle[ContextHandle]] = None

    @property
    def model(self) -> ModelHandle:
        if not self._model:
            raise ConfigurationError("model is not initialized")
        return self._model.get()

    @property
    def context(self) -> ContextHandle:
        if not self._context:
            raise ConfigurationError("context is not initialized")
        return self._context.get()

    @property
    def has_model(self) -> bool:
        return bool(self._model)

    @property
    def has_context(self) -> bool:
        return bool(self._context)

    def load_model(self, path: str, params: ModelParams) -> ModelHandle:
        """Load a model, replacing any previously loaded one."""
        self.close()
        model = self.backend.load_model(path, params)
        self._model = ScopedHandle(model, _close, name="model")
        return model

    def create_context(self, params: ContextParams) -> ContextHandle:
        """Create a context, replacing any existing one."""
        self.release_context()
        context = self.model.create_context(params)
        self._context = ScopedHandle(context, _close, name="context")
        return context

    def release_context(self) -> None:
        if self._context is not None:
            self._context.release()
            self._context = None

    def close(self) -> None:
        """Release context then model."""
        self.release_context()
        if self._model is not None:
            self._model.release()
            self._model = None

    def __enter__(self) -> "EngineResources":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __copy__(self):
        raise TypeError("EngineResources cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("EngineResources cannot be copied")
