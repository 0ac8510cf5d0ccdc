#!/usr/bin/env python3
"""
Connection settings for the Harmony Hub client

Settings can be built directly, from a dictionary, or from an optional
user 'config.py' module (see 'config.sample.py').
"""

import importlib
import logging
from dataclasses import dataclass, fields
from typing import Dict, Any, Optional, Tuple

# Set up logging
logger = logging.getLogger(__name__)

DEFAULT_HUB_PORT = 8088
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_SEND_TIMEOUT = 30.0
# The hub drops idle sockets after 60s
DEFAULT_HEARTBEAT_INTERVAL = 50.0

# config.py key -> HubConfig field
_MODULE_KEYS = {
    'HUB_PORT': 'port',
    'CONNECT_TIMEOUT': 'connect_timeout',
    'SEND_TIMEOUT': 'send_timeout',
    'HEARTBEAT_INTERVAL': 'heartbeat_interval',
    'BOOTSTRAP_ATTEMPTS': 'bootstrap_attempts',
}


@dataclass
class HubConfig:
    """Timeouts and port used to reach the hub. Durations are in seconds."""
    port: int = DEFAULT_HUB_PORT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    bootstrap_attempts: int = 1

    def __post_init__(self):
        for item in fields(self):
            value = getattr(self, item.name)
            if value <= 0:
                raise ValueError(f"{item.name} must be positive, got {value!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HubConfig':
        """Create HubConfig from config.py style keys, defaulting missing ones"""
        values = {}
        for key, name in _MODULE_KEYS.items():
            if data.get(key) is not None:
                values[name] = data[key]
        return cls(**values)


def load_config(module_name: str = "config") -> Tuple[Optional[str], HubConfig]:
    """
    Load hub address and settings from a user configuration module

    Args:
        module_name: Importable name of the configuration module

    Returns:
        Tuple of (HUB_IP or None, HubConfig)
    """
    try:
        module = importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        if e.name != module_name:
            raise
        logger.debug(f"No '{module_name}' module found, using default settings")
        return None, HubConfig()

    data = {key: getattr(module, key) for key in dir(module) if key.isupper()}
    return data.get('HUB_IP'), HubConfig.from_dict(data)
