import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class SingleShotTimer:
    """Cancellable one-shot timer on the running event loop.

    Restarting cancels the pending shot. Async callbacks are run as tasks, which are
    tracked so tests and shutdown can wait for them.

    Args:
        name: Label used in log lines.
        callback: Sync or async callable without arguments.
    """

    def __init__(self, name: str, callback: Callable[[], Any]) -> None:
        self.name = name
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self, delay: float) -> None:
        """Arm the timer, replacing any pending shot."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(0.0, delay), self._fire)
        logger.debug(f"Timer '{self.name}' armed for {delay:.2f}s")

    def cancel(self) -> bool:
        """Cancel the pending shot. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        logger.debug(f"Timer '{self.name}' cancelled")
        return True

    def _fire(self) -> None:
        self._handle = None
        logger.debug(f"Timer '{self.name}' fired")
        try:
            result = self.callback()
        except Exception as e:
            logger.error(f"Error in timer '{self.name}' callback: {e}", exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error in timer '{self.name}' callback: {task.exception()}", exc_info=task.exception())

    def pending_callbacks(self) -> List[asyncio.Task]:
        """Async callbacks that fired and have not finished yet."""
        return [task for task in self._tasks if not task.done()]


class TimerGroup:
    """Named single-shot timers cleared together on state changes."""

    def __init__(self) -> None:
        self._timers: Dict[str, SingleShotTimer] = {}

    def arm(self, name: str, delay: float, callback: Callable[[], Any]) -> SingleShotTimer:
        timer = self._timers.get(name)
        if timer is None:
            timer = SingleShotTimer(name, callback)
            self._timers[name] = timer
        else:
            timer.callback = callback
        timer.start(delay)
        return timer

    def cancel(self, name: str) -> bool:
        timer = self._timers.get(name)
        return timer.cancel() if timer else False

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()

    def is_pending(self, name: str) -> bool:
        timer = self._timers.get(name)
        return timer.pending if timer else False

    def pending_callbacks(self) -> List[asyncio.Task]:
        return [task for timer in self._timers.values() for task in timer.pending_callbacks()]
