#!/usr/bin/env python3
"""
Classifies unsolicited hub messages and routes them to event channels
"""

import logging
from typing import Dict, Any, Optional

from hub_events import EventBus, HubEvent

# Set up logging
logger = logging.getLogger(__name__)

PUSH_TYPES = {
    "connect.stateDigest?notify": HubEvent.STATE_DIGEST,
    "automation.state?notify": HubEvent.AUTOMATION_STATE,
    "harmony.engine?startActivityFinished": HubEvent.ACTIVITY_STARTED,
}


def classify(message: Dict[str, Any]) -> Optional[HubEvent]:
    """Return the event for a push message, or None for anything else"""
    push_type = message.get("type")
    if not isinstance(push_type, str):
        return None
    return PUSH_TYPES.get(push_type)


class PushDispatcher:
    """Emits known push notifications verbatim; unknown types are dropped"""

    def __init__(self, events: EventBus):
        self.events = events

    def dispatch(self, message: Dict[str, Any]) -> bool:
        event = classify(message)
        if event is None:
            # Firmware emits undocumented notification types
            logger.debug(f"Dropping unhandled message type={message.get('type')!r} cmd={message.get('cmd')!r}")
            return False
        self.events.emit(event, message)
        return True
