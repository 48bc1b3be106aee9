"""
Single-flight lazy initialization.

The execution engine and every image codec are expensive to bring up and must
exist at most once per process. SingleFlight makes concurrent first callers
await one shared initialization instead of racing to run it twice.
"""

import asyncio
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Cache the result of one async factory call, sharing it between callers."""

    def __init__(self, factory: Callable[..., Awaitable[T]]):
        self._factory = factory
        self._value: Optional[T] = None
        self._pending: Optional["asyncio.Future[T]"] = None

    @property
    def ready(self) -> bool:
        return self._value is not None

    async def get(self, *args: Any, **kwargs: Any) -> T:
        """
        Return the cached value, running the factory if nobody has yet.

        Arguments are only used by the call that starts the initialization;
        callers arriving while it is in flight share its result.
        """
        if self._value is not None:
            return self._value

        pending = self._pending
        if pending is None:
            pending = asyncio.ensure_future(self._factory(*args, **kwargs))
            self._pending = pending

        try:
            value = await asyncio.shield(pending)
        finally:
            # A failed load is forgotten so the next caller can retry
            if self._pending is pending and pending.done():
                self._pending = None

        self._value = value
        return value

    def peek(self) -> Optional[T]:
        return self._value

    def reset(self) -> None:
        """Forget the cached value (the next get() initializes again)."""
        self._value = None
        self._pending = None
