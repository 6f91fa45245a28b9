import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_UNSET = object()


class SingleFlight:
    """
    Process-scoped memoized load shared by every caller.

    The first caller schedules `loader` as a task; concurrent callers await that
    same task instead of starting another load. A completed value is kept for
    the process lifetime. If the load raises, the slot is cleared so a later
    call may try again, and every waiter sees the error.
    """

    def __init__(self, loader: Callable[[], Awaitable[Any]], name: str = "resource"):
        self._loader = loader
        self._name = name
        self._value: Any = _UNSET
        self._task: Optional[asyncio.Task] = None
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._value is not _UNSET

    def peek(self) -> Any:
        return None if self._value is _UNSET else self._value

    async def get(self) -> Any:
        if self._value is not _UNSET:
            return self._value

        loop = asyncio.get_running_loop()
        # A task left pending on a closed loop can never complete here
        if self._task is None or (self._task.get_loop() is not loop and not self._task.done()):
            self._task = loop.create_task(self._run())

        return await asyncio.shield(self._task)

    async def _run(self) -> Any:
        self.load_count += 1
        logger.debug("Loading %s (attempt %d)", self._name, self.load_count)
        try:
            value = await self._loader()
        except BaseException:
            self._task = None
            raise
        self._value = value
        return value

    def set(self, value: Any) -> None:
        """Seed the slot synchronously (used by blocking entry points)."""
        self._value = value
