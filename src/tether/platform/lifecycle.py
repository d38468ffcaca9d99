from enum import Enum

from tether.shared.events import EventChannel


class LifecycleEvent(str, Enum):
    """App lifecycle signals, independent of any UI toolkit."""

    RESUMED = "resumed"
    """App is visible and has input focus."""

    INACTIVE = "inactive"
    """App is visible but not receiving input."""

    PAUSED = "paused"
    """App moved to the background."""

    DETACHED = "detached"
    """App is about to be torn down or has no view attached."""


class LifecycleSource(EventChannel[LifecycleEvent]):
    """Channel the host application feeds lifecycle events into.

    Client sessions subscribe to it when given one at construction.
    """

    def __init__(self, name: str = "lifecycle"):
        super().__init__(name)
        self.current: LifecycleEvent | None = None

    async def publish(self, event: LifecycleEvent) -> None:
        self.current = event
        await super().publish(event)
