#!/usr/bin/env python3
"""
Publish/subscribe channels for session lifecycle and hub notifications
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Dict, List, Callable, Any, Optional

# Set up logging
logger = logging.getLogger(__name__)


class HubEvent(str, Enum):
    """Named channels emitted to the embedding application"""
    OPEN = "open"
    CLOSE = "close"
    STATE_DIGEST = "stateDigest"
    AUTOMATION_STATE = "automationState"
    ACTIVITY_STARTED = "activityStarted"


class EventBus:
    """
    Fan-out of events to independent subscribers.

    Callbacks may be plain functions or coroutine functions; coroutines are
    scheduled as tasks on the running loop. A failing subscriber is logged and
    does not prevent delivery to the others.
    """

    def __init__(self):
        self._subscribers: Dict[HubEvent, List[Callable]] = {event: [] for event in HubEvent}
        self._tasks = set()

    def subscribe(self, event, callback: Callable) -> Callable[[], None]:
        """
        Register a callback for an event

        Args:
            event: HubEvent or its string value (e.g. "stateDigest")
            callback: Called with the notification message, or no argument for open/close

        Returns:
            Function that removes this subscription
        """
        channel = self._subscribers[HubEvent(event)]
        channel.append(callback)

        def unsubscribe():
            if callback in channel:
                channel.remove(callback)

        return unsubscribe

    def subscriber_count(self, event) -> int:
        return len(self._subscribers[HubEvent(event)])

    def emit(self, event, message: Optional[Dict[str, Any]] = None):
        event = HubEvent(event)
        args = () if message is None else (message,)
        for callback in list(self._subscribers[event]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception:
                logger.exception(f"Subscriber for '{event.value}' failed")

    def _task_done(self, task: asyncio.Future):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async subscriber failed: {task.exception()!r}")
