import asyncio
from types import TracebackType
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

from lightbridge.core.errors import LightingError, Outcome

T = TypeVar("T")


class TaskManager:
    """
    Runs one background coroutine for the lifetime of an `async with` block.

    Used for the registry refresher: the task is started on entry and
    cancelled on exit. If it already finished, its result is kept and an
    error it ended with is logged.
    """

    def __init__(
        self,
        coro: Callable[[], Awaitable[T]],
        name: Optional[str] = None,
        timeout: float = 0.5,
    ):
        """
        Args:
            coro: Factory returning the coroutine to run, called once on entry
            name: Task name, also used in log lines
            timeout: Seconds to wait for the cancelled task to unwind
        """
        self.coro_factory = coro
        self.name = name or "Task"
        self.task: Optional[asyncio.Task] = None
        self.timeout = timeout
        self.result: Optional[T] = None

    async def __aenter__(self) -> "TaskManager":
        self.task = asyncio.create_task(self.coro_factory(), name=self.name)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if not self.task:
            return

        if self.task.done() and not self.task.cancelled():
            exc = self.task.exception()
            if exc is None:
                self.result = self.task.result()
            else:
                logger.warning(f"{self.name} finished with an error: {exc}")

        if not self.task.done():
            self.task.cancel()
            # Shielded so an outer cancellation cannot skip the unwind
            await asyncio.shield(asyncio.wait([self.task], timeout=self.timeout))

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()


async def run_device_operation(
    coro: Awaitable[T], error_message: str = "Operation failed"
) -> Tuple[Outcome, Optional[T]]:
    """
    Run a device coroutine and classify how it ended.

    Lighting errors are logged and turned into their outcome; anything the
    transports did not wrap is reported as a transport failure.

    Args:
        coro: The coroutine to run
        error_message: Message to log if the operation fails

    Returns:
        (outcome, value) where value is None unless the outcome is SUCCESS
    """
    try:
        return Outcome.SUCCESS, await coro
    except asyncio.CancelledError:
        # Re-raise cancellation for proper cleanup
        raise
    except LightingError as e:
        logger.error(f"{error_message}: {e}")
        return e.outcome, None
    except Exception as e:
        logger.exception(f"{error_message}: {e}")
        return Outcome.TRANSPORT_FAILURE, None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_percentage(value: float) -> int:
    """Round and clamp a percentage-style value into 0..100."""
    return int(round(clamp(value, 0, 100)))
