import asyncio
from typing import Any, Awaitable, Callable, NamedTuple, Optional, TypeVar

from catalog_api.exceptions import WriteSerializerClosedError
from catalog_api.logging_config import get_child_logger

logger = get_child_logger("write_serializer")

T = TypeVar("T")


class _PendingWrite(NamedTuple):
    label: str
    operation: Callable[[], Awaitable[Any]]
    outcome: "asyncio.Future[Any]"


def _retrieve_outcome(outcome: "asyncio.Future[Any]") -> None:
    # a cancelled submitter no longer awaits its outcome; the failure is
    # already logged by the worker
    if not outcome.cancelled():
        outcome.exception()


class WriteSerializer:
    """
    Runs submitted mutations one at a time, in submission order.

    Each submission gets its own future, so a caller always receives the
    result or exception of its own operation. A failing operation does not
    stop the operations queued behind it. Once an operation has started it
    runs to completion even if the submitting task is cancelled.
    """

    def __init__(self, name: str = "catalog"):
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of mutations waiting to run."""
        return self._queue.qsize() if self._queue is not None else 0

    def _ensure_worker(self) -> None:
        loop = asyncio.get_running_loop()
        if self._worker is not None and not self._worker.done() and self._loop is loop:
            return
        self._loop = loop
        self._queue = asyncio.Queue()
        self._worker = loop.create_task(self._drain(self._queue), name=f"{self.name}-writer")

    async def submit(self, operation: Callable[[], Awaitable[T]], label: str = "write") -> T:
        """
        Queue a mutation and wait for its own outcome.

        Args:
            operation: Zero-argument coroutine function performing the mutation
            label: Short description used in logs

        Raises:
            WriteSerializerClosedError: If the serializer has been closed
            Exception: Whatever the operation itself raised
        """
        if self._closed:
            raise WriteSerializerClosedError(f"Serializer '{self.name}' is closed")
        self._ensure_worker()
        outcome = self._loop.create_future()
        outcome.add_done_callback(_retrieve_outcome)
        self._queue.put_nowait(_PendingWrite(label, operation, outcome))
        return await asyncio.shield(outcome)

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            pending = await queue.get()
            try:
                result = await pending.operation()
            except Exception as e:
                logger.info(
                    "Queued write failed",
                    extra={"serializer": self.name, "label": pending.label, "error_type": type(e).__name__},
                )
                if not pending.outcome.done():
                    pending.outcome.set_exception(e)
            else:
                if not pending.outcome.done():
                    pending.outcome.set_result(result)
            finally:
                queue.task_done()

    async def close(self) -> None:
        """
        Stop accepting writes, let queued writes finish, then stop the worker.
        """
        self._closed = True
        if self._worker is None or self._worker.done():
            return
        if self._loop is not asyncio.get_running_loop():
            # worker belongs to a loop that is no longer running
            self._worker = None
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
