import asyncio
from typing import Awaitable, Set, TypeVar

from aida.logging_config import get_logger
from aida.services.result import Result

logger = get_logger("timeout_service")

T = TypeVar("T")

TIMEOUT_ERROR_CODE = "timeout"


class TimeoutGuard:
    """Races a pipeline against a deadline.

    By default the pipeline is cancelled when the deadline passes. With
    cancel_on_timeout=False it keeps running in the background and its side
    effects (persistence, stats) may land after the caller saw the timeout.
    """

    def __init__(self, timeout_seconds: float = 30.0, cancel_on_timeout: bool = True):
        self.timeout_seconds = timeout_seconds
        self.cancel_on_timeout = cancel_on_timeout
        self._background: Set[asyncio.Task] = set()

    @property
    def background_count(self) -> int:
        return len(self._background)

    def _timeout_result(self) -> Result:
        return Result.failure(f"Response generation timed out after {self.timeout_seconds}s", TIMEOUT_ERROR_CODE)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background pipeline failed after timeout: {error}")
        else:
            logger.info("Background pipeline finished after timeout")

    async def run(self, awaitable: Awaitable[T]) -> Result[T]:
        if self.cancel_on_timeout:
            try:
                value = await asyncio.wait_for(awaitable, self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Pipeline cancelled after {self.timeout_seconds}s timeout")
                return self._timeout_result()
            return Result.success(value)

        task = asyncio.ensure_future(awaitable)
        try:
            value = await asyncio.wait_for(asyncio.shield(task), self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Pipeline timed out after {self.timeout_seconds}s, left running in background")
            self._background.add(task)
            task.add_done_callback(self._on_background_done)
            return self._timeout_result()
        return Result.success(value)
