import asyncio
import inspect
import itertools
import logging
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Type

from voicenotes.app.events.base_event import BaseEvent, EventPriority

logger = logging.getLogger(__name__)


def _handler_name(handler: Callable) -> str:
    return handler.__name__ if hasattr(handler, "__name__") else str(handler)


class Subscription:
    """Handle returned by EventBus.subscribe.

    Releasing it removes the handler from the bus. Releasing twice is a no-op.
    """

    def __init__(self, bus: "EventBus", event_type: Type[BaseEvent], handler: Callable[[BaseEvent], Any]) -> None:
        self.event_type = event_type
        self.handler = handler
        self._bus = bus
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus.unsubscribe(self.event_type, self.handler)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


class EventBus:
    """Asynchronous event bus with priority-ordered dispatch and critical operation tracking.

    Events are queued in an asyncio priority queue and dispatched by a single worker task,
    so handlers for one event run to completion before the next event is delivered. Both
    sync and async handlers are supported and handler exceptions are logged, never
    propagated to the publisher. Subscribing is thread-safe; dispatch happens on the loop.

    Critical operations (for example a dictation finalization) block stop_worker until
    they are unregistered.

    Attributes:
        _subscribers: Event type to handler list.
        _event_queue: Priority queue of (priority, insertion counter, event).
        _worker_task: Background dispatch task.
        _is_shutting_down: Set once stop_worker has been accepted.
        _critical_operations: IDs currently blocking shutdown.
        _max_queue_size: Queue depth above which NORMAL and LOW events are dropped.
    """

    def __init__(
        self,
        high_priority_sleep: float = 0.001,
        low_priority_sleep: float = 0.005,
        max_queue_size: int = 500,
    ) -> None:
        """Initialize the event bus.

        Args:
            high_priority_sleep: Pause after a HIGH event when the queue is empty.
            low_priority_sleep: Pause after a NORMAL or LOW event when the queue is empty.
            max_queue_size: Depth at which backpressure starts dropping low priority events.
        """
        self._subscribers: Dict[Type[BaseEvent], List[Callable[[BaseEvent], Any]]] = defaultdict(list)
        self._event_queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._worker_task: Optional[asyncio.Task] = None
        self._is_shutting_down: bool = False
        self._critical_operations: set = set()
        self._high_priority_sleep: float = high_priority_sleep
        self._low_priority_sleep: float = low_priority_sleep
        self._counter: itertools.count = itertools.count()
        self._critical_ops_lock: asyncio.Lock = asyncio.Lock()
        self._subscribers_lock: threading.RLock = threading.RLock()
        self._max_queue_size: int = max_queue_size
        self._events_dropped: int = 0

    async def publish(self, event: BaseEvent) -> None:
        """Queue an event for dispatch.

        Events are rejected during shutdown. When the queue is full, NORMAL and LOW events
        are dropped while CRITICAL and HIGH events are always accepted.

        Args:
            event: BaseEvent instance to deliver.
        """
        if self._is_shutting_down:
            logger.debug(f"Rejecting event {type(event).__name__} during shutdown")
            return

        if not isinstance(event, BaseEvent):
            logger.error(f"Event data must be a subclass of BaseEvent, got {type(event)}")
            return

        queue_size = self._event_queue.qsize()
        if queue_size >= self._max_queue_size:
            if event.priority >= EventPriority.NORMAL:
                self._events_dropped += 1
                logger.warning(
                    f"Queue full ({queue_size}/{self._max_queue_size}) - dropping {type(event).__name__} "
                    f"(priority={event.priority}, total_dropped={self._events_dropped})"
                )
                return
            logger.error(
                f"Queue full ({queue_size}/{self._max_queue_size}) but forcing {type(event).__name__} "
                f"(priority={event.priority})"
            )

        await self._event_queue.put((event.priority, next(self._counter), event))

    def subscribe(self, event_type: Type[BaseEvent], handler: Callable[[BaseEvent], Any]) -> Subscription:
        """Register a handler for an event type and its subclasses.

        Args:
            event_type: BaseEvent subclass to receive.
            handler: Sync or async callable taking the event.

        Returns:
            Subscription handle; call release() to unsubscribe.

        Raises:
            TypeError: event_type is not a BaseEvent subclass or handler is not callable.
        """
        if not inspect.isclass(event_type) or not issubclass(event_type, BaseEvent):
            raise TypeError(f"Can only subscribe to subclasses of BaseEvent, got {event_type}")

        if not callable(handler):
            raise TypeError(f"Handler must be callable, got {type(handler)}")

        logger.debug(f"Subscribing handler {_handler_name(handler)} to event type: {event_type.__name__}")
        with self._subscribers_lock:
            self._subscribers[event_type].append(handler)
        return Subscription(self, event_type, handler)

    def unsubscribe(self, event_type: Type[BaseEvent], handler: Callable[[BaseEvent], Any]) -> bool:
        """Remove one registration of handler for event_type.

        Returns:
            True if a registration was removed.
        """
        with self._subscribers_lock:
            handlers = self._subscribers.get(event_type)
            if not handlers or handler not in handlers:
                return False
            handlers.remove(handler)
            if not handlers:
                del self._subscribers[event_type]
        logger.debug(f"Unsubscribed handler {_handler_name(handler)} from event type: {event_type.__name__}")
        return True

    async def _dispatch(self, event: BaseEvent) -> None:
        event_type = type(event)
        with self._subscribers_lock:
            handlers_to_call = [
                handler
                for subscribed_type, handlers in self._subscribers.items()
                if isinstance(event, subscribed_type)
                for handler in handlers
            ]

        if not handlers_to_call:
            logger.debug(f"No handlers registered for event '{event_type.__name__}'")
            return

        for handler in handlers_to_call:
            try:
                handler_start = time.monotonic()
                result = handler(event)
                if inspect.isawaitable(result):
                    await result

                handler_time = time.monotonic() - handler_start
                if handler_time > 0.1:
                    logger.warning(
                        f"Slow handler {_handler_name(handler)} for event '{event_type.__name__}': {handler_time:.4f}s"
                    )
            except Exception as e:
                logger.error(
                    f"Error in handler {_handler_name(handler)} for event '{event_type.__name__}': {e}", exc_info=True
                )

    async def _process_events(self) -> None:
        """Worker loop: pop the highest priority event and deliver it to every matching handler."""
        logger.debug("Event processing worker started")

        while True:
            try:
                priority, _, event = await self._event_queue.get()
                try:
                    await self._dispatch(event)
                finally:
                    self._event_queue.task_done()

                if priority == EventPriority.CRITICAL or not self._event_queue.empty():
                    await asyncio.sleep(0)
                else:
                    await asyncio.sleep(
                        self._low_priority_sleep if priority >= EventPriority.NORMAL else self._high_priority_sleep
                    )
            except asyncio.CancelledError:
                logger.debug("Event processing worker cancelled")
                break
            except Exception as e:
                logger.critical(f"Fatal error in event processing worker: {e}", exc_info=True)
                await asyncio.sleep(0.1)

    async def start_worker(self) -> None:
        """Start the dispatch task. Safe to call repeatedly; refused after shutdown."""
        if self._is_shutting_down:
            logger.debug("Not starting worker during shutdown")
            return

        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._process_events())
            logger.debug("Event bus worker started")
        else:
            logger.debug("Event bus worker already running")

    async def drain(self, timeout: float = 2.0) -> bool:
        """Wait until every queued event has been dispatched.

        Events published by handlers while draining are waited for as well.

        Returns:
            True if the queue emptied within timeout.
        """
        try:
            await asyncio.wait_for(self._event_queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Event queue not drained within {timeout}s ({self._event_queue.qsize()} pending)")
            return False

    async def stop_worker(self) -> None:
        """Drain the queue, stop the worker and drop all subscribers.

        Refuses to shut down while critical operations are registered.
        """
        if await self.has_critical_operations():
            async with self._critical_ops_lock:
                critical_ops = list(self._critical_operations)
            logger.warning(f"Cannot shutdown event bus - critical operations active: {critical_ops}")
            return

        if self._worker_task is not None and not self._worker_task.done():
            if not await self.drain():
                logger.warning(f"Could not process all events before shutdown. {self._event_queue.qsize()} events discarded.")
        self._is_shutting_down = True

        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                logger.debug("Event bus worker successfully stopped")

        with self._subscribers_lock:
            logger.debug(f"Clearing {len(self._subscribers)} subscriber lists")
            self._subscribers.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """Snapshot of queue depth, subscriber counts, worker status and critical operations."""
        worker_status = "running"
        if self._worker_task is None:
            worker_status = "not_created"
        elif self._worker_task.done():
            worker_status = "cancelled" if self._worker_task.cancelled() else "stopped"

        async with self._critical_ops_lock:
            critical_ops = list(self._critical_operations)

        with self._subscribers_lock:
            subscribers = {event.__name__: len(handlers) for event, handlers in self._subscribers.items()}

        return {
            "queue_size": self._event_queue.qsize(),
            "max_queue_size": self._max_queue_size,
            "events_dropped": self._events_dropped,
            "subscribers": subscribers,
            "worker_status": worker_status,
            "is_shutting_down": self._is_shutting_down,
            "critical_operations": critical_ops,
        }

    async def register_critical_operation(self, operation_id: str) -> None:
        """Block shutdown until operation_id is unregistered."""
        async with self._critical_ops_lock:
            self._critical_operations.add(operation_id)
        logger.debug(f"Registered critical operation: {operation_id}")

    async def unregister_critical_operation(self, operation_id: str) -> None:
        async with self._critical_ops_lock:
            self._critical_operations.discard(operation_id)
        logger.debug(f"Unregistered critical operation: {operation_id}")

    async def has_critical_operations(self) -> bool:
        async with self._critical_ops_lock:
            return len(self._critical_operations) > 0
