#!/usr/bin/env python3
"""
Reshaping of Harmony Hub configuration replies

The hub configuration is passed through as returned by the hub; these helpers
only pick out the parts the derived queries need.
"""

import json
import logging
from typing import Dict, List, Any

from hub_errors import ProtocolError

# Set up logging
logger = logging.getLogger(__name__)


def config_entries(response: Dict[str, Any], section: str) -> List[Dict[str, Any]]:
    """
    Return the list stored under data.<section> of a config reply

    Args:
        response: Reply to the engine 'config' verb
        section: 'activity' or 'device'

    Raises:
        ProtocolError: the reply has no data object or the section is not a list
    """
    data = response.get('data') if isinstance(response, dict) else None
    if not isinstance(data, dict):
        raise ProtocolError("Config reply missing 'data' field")

    entries = data.get(section, [])
    if not isinstance(entries, list):
        raise ProtocolError(f"Config section '{section}' is not a list")
    return [entry for entry in entries if isinstance(entry, dict)]


def find_entry(entries: List[Dict[str, Any]], entry_id) -> Dict[str, Any]:
    """Find an activity or device by id; ids are compared as strings"""
    for entry in entries:
        if str(entry.get('id')) == str(entry_id):
            return entry
    return {}


def parse_action(action: Any) -> Any:
    """Decode a function's JSON action, keeping the raw value if it is not JSON"""
    if not isinstance(action, str):
        return action
    try:
        return json.loads(action)
    except ValueError:
        logger.debug(f"Keeping undecodable action as text: {action[:60]!r}")
        return action


def collect_commands(entry: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten every control group function of an entry into {action, label} items"""
    commands = []
    for group in entry.get('controlGroup') or []:
        if not isinstance(group, dict):
            continue
        for func in group.get('function') or []:
            if isinstance(func, dict):
                commands.append({
                    'action': parse_action(func.get('action')),
                    'label': func.get('label', '')
                })
    return commands


def activity_summaries(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{'id': activity.get('id'), 'label': activity.get('label')}
            for activity in config_entries(response, 'activity')]


def controllable_devices(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    # Devices without control groups have nothing to send
    return [device for device in config_entries(response, 'device')
            if device.get('controlGroup')]


def activity_commands(response: Dict[str, Any], activity_id) -> List[Dict[str, Any]]:
    return collect_commands(find_entry(config_entries(response, 'activity'), activity_id))


def device_commands(response: Dict[str, Any], device_id) -> List[Dict[str, Any]]:
    return collect_commands(find_entry(config_entries(response, 'device'), device_id))
