"""Helpers for component subscriptions.

EventSubscriptionManager keeps the Subscription handles a component creates so it can
release them all at teardown.
"""
import logging
from typing import Callable, List, Type

from voicenotes.app.event_bus import EventBus, Subscription
from voicenotes.app.events.base_event import BaseEvent

logger = logging.getLogger(__name__)


class EventSubscriptionManager:
    """Tracks the subscriptions a component makes so teardown can release them together.

    Attributes:
        event_bus: EventBus instance.
        component_name: Name used in log lines.
        subscriptions: Handles created through this manager.
    """

    def __init__(self, event_bus: EventBus, component_name: str) -> None:
        self.event_bus: EventBus = event_bus
        self.component_name: str = component_name
        self.subscriptions: List[Subscription] = []

    def subscribe(self, event_type: Type[BaseEvent], handler: Callable) -> Subscription:
        subscription = self.event_bus.subscribe(event_type=event_type, handler=handler)
        self.subscriptions.append(subscription)
        logger.debug(f"{self.component_name}: Subscribed to {event_type.__name__} with handler {getattr(handler, '__name__', handler)}")
        return subscription

    def unsubscribe_all(self) -> None:
        """Release every tracked subscription."""
        logger.debug(f"{self.component_name}: Releasing {len(self.subscriptions)} subscriptions")
        for subscription in self.subscriptions:
            subscription.release()
        self.subscriptions.clear()
