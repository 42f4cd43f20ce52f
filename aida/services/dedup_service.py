import asyncio
import hashlib
import string
from typing import Awaitable, Callable, Dict, TypeVar

from aida.logging_config import get_logger
from aida.services.response_types import ResponseRequest

logger = get_logger("dedup_service")

T = TypeVar("T")

HASH_MODES = ("rolling", "sha256")
_BASE36_DIGITS = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def rolling_hash(text: str) -> str:
    """32-bit multiply-add hash (h * 31 + c), signed wrap, abs value in base36.

    Not collision resistant: two different messages in one conversation can
    share a fingerprint. Use the sha256 mode when that matters.
    """
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def sha256_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class RequestDeduplicator:
    """Collapses concurrent identical requests into one pipeline execution.

    Entries live only while their task runs; there is no time-based expiry,
    so a repeat of an already answered message is processed again.
    """

    def __init__(self, hash_mode: str = "rolling"):
        if hash_mode not in HASH_MODES:
            raise ValueError(f"Unknown dedup hash mode: {hash_mode}")
        self.hash_mode = hash_mode
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def fingerprint(self, request: ResponseRequest) -> str:
        digest = sha256_hash(request.message) if self.hash_mode == "sha256" else rolling_hash(request.message)
        return f"{request.conversation_id}-{digest}"

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def _execute(self, key: str, run: Callable[[], Awaitable[T]]) -> T:
        try:
            return await run()
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    async def submit(self, request: ResponseRequest, run: Callable[[], Awaitable[T]]) -> T:
        """Run `run()` unless an identical request is in flight; share its result either way."""
        key = self.fingerprint(request)
        async with self._lock:
            task = self._in_flight.get(key)
            joined = task is not None
            if task is None:
                task = asyncio.ensure_future(self._execute(key, run))
                self._in_flight[key] = task

        if joined:
            logger.info(
                f"Duplicate request joined in-flight pipeline: {key}",
                extra={"context": {"dedup_key": key, "conversation_id": request.conversation_id}},
            )
        # A cancelled caller must not cancel the pipeline other callers share.
        return await asyncio.shield(task)
