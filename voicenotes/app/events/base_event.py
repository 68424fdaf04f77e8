from enum import IntEnum
from typing import ClassVar

from pydantic import BaseModel


class EventPriority(IntEnum):
    """Processing priority for the event bus queue; lower values are dispatched first.

    Attributes:
        CRITICAL: Highest priority (10), dispatched without any inter-event pause.
        HIGH: Prompt processing (20), used for commands, dictation text and listening lifecycle.
            Events of equal priority are delivered in publish order.
        NORMAL: Default priority (50).
        LOW: Non-urgent notifications (80).
    """

    CRITICAL = 10
    HIGH = 20
    NORMAL = 50
    LOW = 80


class BaseEvent(BaseModel):
    """Root of the event hierarchy. Everything published on the EventBus derives from it.

    Attributes:
        event_name: Stable wire name collaborators can key on (class level).
        priority: Queue priority, NORMAL by default.
    """

    event_name: ClassVar[str] = "event"

    priority: EventPriority = EventPriority.NORMAL
