#!/usr/bin/env python3
"""
Harmony Hub client

Connects to a Logitech Harmony Hub over its local WebSocket API and exposes
the hub commands as coroutines. Every command opens the session first if
needed, so callers never see a "not yet connected" failure.

    async with HarmonyClient("192.168.1.20") as hub:
        hub.subscribe("activityStarted", print)
        await hub.start_activity("12345678")
"""

import asyncio
import dataclasses
import json
import logging
from typing import Dict, List, Any, Callable, Optional, Union

import aiohttp

import config_models
from hub_bootstrap import HubIdentity, network_retry, resolve_hub_identity
from hub_config import HubConfig
from hub_errors import ProtocolError, TransportClosed
from hub_events import EventBus
from hub_transport import NO_REPLY_ID, SessionState, SessionTransport

# Set up logging
logger = logging.getLogger(__name__)

ENGINE = "vnd.logitech.harmony/vnd.logitech.harmony.engine"
CONFIG_CMD = f"{ENGINE}?config"
CURRENT_ACTIVITY_CMD = f"{ENGINE}?getCurrentActivity"
HOLD_ACTION_CMD = f"{ENGINE}?holdAction"
RUN_ACTIVITY_CMD = "harmony.activityengine?runactivity"
RESOURCE_CMD = "proxy.resource?get"
AUTOMATION_GET_CMD = "harmony.automation?getstate"
AUTOMATION_SET_CMD = "harmony.automation?setstate"
AUTOMATION_CONFIG_URI = "dynamite://HomeAutomationService/Config/"

Action = Union[str, Dict[str, Any]]


def _encode_action(action: Action) -> str:
    """The hub expects the action as a JSON string"""
    if isinstance(action, str):
        return action
    return json.dumps(action)


class HarmonyClient:
    def __init__(self, host: str, config: Optional[HubConfig] = None,
                 http_session: Optional[aiohttp.ClientSession] = None):
        self.host = host
        self.config = config or HubConfig()
        self.events = EventBus()
        self._http = http_session
        self._owns_http = http_session is None
        self._transport: Optional[SessionTransport] = None
        self._connecting: Optional[asyncio.Task] = None

    # Settings apply to the next session

    @property
    def connect_timeout(self) -> float:
        return self.config.connect_timeout

    @connect_timeout.setter
    def connect_timeout(self, timeout: float):
        self.config = dataclasses.replace(self.config, connect_timeout=timeout)

    @property
    def send_timeout(self) -> float:
        return self.config.send_timeout

    @send_timeout.setter
    def send_timeout(self, timeout: float):
        self.config = dataclasses.replace(self.config, send_timeout=timeout)

    @property
    def state(self) -> SessionState:
        if self._transport is None:
            return SessionState.IDLE
        if self._connecting is not None and not self._connecting.done():
            return SessionState.CONNECTING
        return self._transport.state

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self._transport.is_open

    @property
    def identity(self) -> Optional[HubIdentity]:
        return self._transport.identity if self._transport else None

    def subscribe(self, event, callback: Callable) -> Callable[[], None]:
        """Subscribe to open, close, stateDigest, automationState or activityStarted"""
        return self.events.subscribe(event, callback)

    async def connect(self):
        """
        Resolve the hub identity and open a session.

        Concurrent calls share the attempt in flight. Once a session has closed,
        calling connect() again builds a new one.
        """
        if self._connecting is not None and not self._connecting.done():
            await asyncio.shield(self._connecting)
            return
        if self.is_open:
            return

        if self._http is None or (self._owns_http and self._http.closed):
            self._http = aiohttp.ClientSession()
            self._owns_http = True

        self._transport = SessionTransport(self._http, self.host, self.config, self.events)
        self._connecting = asyncio.create_task(self._open(self._transport))
        await asyncio.shield(self._connecting)

    async def _open(self, transport: SessionTransport):
        if transport.state is SessionState.CLOSED:
            raise TransportClosed(f"Session with {self.host} was closed before it opened")

        resolve = network_retry(max_attempts=self.config.bootstrap_attempts)(resolve_hub_identity)
        try:
            identity = await resolve(self._http, self.host, self.config.port, self.config.connect_timeout)
            await transport.open(identity)
        except BaseException:
            await transport.close()
            raise

    async def _ensure_open(self) -> SessionTransport:
        if self._transport is None:
            await self.connect()
        elif self._connecting is not None and not self._connecting.done():
            await asyncio.shield(self._connecting)

        if not self._transport.is_open:
            raise TransportClosed(f"Session with {self.host} is {self._transport.state.value}")
        return self._transport

    async def close(self):
        if self._transport is not None:
            await self._transport.close()
        # an open still in flight ends with TransportClosed before the HTTP session goes
        if self._connecting is not None and not self._connecting.done():
            await asyncio.wait([self._connecting])
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def request(self, cmd: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one hub verb and return the reply

        Args:
            cmd: Hub verb, e.g. 'harmony.automation?getstate'
            params: Verb parameters

        Returns:
            The reply whose id matches the request
        """
        transport = await self._ensure_open()
        return await transport.request(transport.envelope(cmd, params))

    async def get_capabilities(self) -> Dict[str, Any]:
        transport = await self._ensure_open()
        uri = f"harmony://Account/{transport.identity.remote_id}/CapabilityList"
        return await transport.request(transport.envelope(RESOURCE_CMD, {"uri": uri}))

    async def get_config(self) -> Dict[str, Any]:
        return await self.request(CONFIG_CMD, {"verb": "get", "format": "json"})

    async def get_automation_config(self) -> Dict[str, Any]:
        return await self.request(RESOURCE_CMD, {"uri": AUTOMATION_CONFIG_URI})

    async def get_activities(self) -> List[Dict[str, Any]]:
        """List activities as {id, label}"""
        return config_models.activity_summaries(await self.get_config())

    async def get_current_activity(self) -> str:
        """Id of the running activity ('-1' when everything is off)"""
        response = await self.request(CURRENT_ACTIVITY_CMD, {"verb": "get", "format": "json"})
        data = response.get("data")
        if not isinstance(data, dict) or "result" not in data:
            raise ProtocolError(f"Current activity reply missing 'data.result': {response!r}")
        return data["result"]

    async def start_activity(self, activity_id: str) -> Dict[str, Any]:
        params = {
            "async": "true",
            "timestamp": 0,
            "args": {"rule": "start"},
            "activityId": activity_id
        }
        return await self.request(RUN_ACTIVITY_CMD, params)

    async def get_activity_commands(self, activity_id: str) -> List[Dict[str, Any]]:
        """Commands of an activity as {action, label}; unknown activities give []"""
        return config_models.activity_commands(await self.get_config(), activity_id)

    async def get_devices(self) -> List[Dict[str, Any]]:
        """Devices that have at least one control group"""
        return config_models.controllable_devices(await self.get_config())

    async def get_device_commands(self, device_id: str) -> List[Dict[str, Any]]:
        """Commands of a device as {action, label}; unknown devices give []"""
        return config_models.device_commands(await self.get_config(), device_id)

    async def get_automation_commands(self) -> Dict[str, Any]:
        return await self.request(AUTOMATION_GET_CMD, {"format": "json", "forceUpdate": True})

    async def send_command(self, action: Action) -> Dict[str, Any]:
        """Press and release a button in one frame and wait for the hub's reply"""
        params = {
            "status": "pressrelease",
            "timestamp": "0",
            "verb": "render",
            "action": _encode_action(action)
        }
        return await self.request(HOLD_ACTION_CMD, params)

    async def send_command_with_delay(self, action: Action, hold_ms: Union[int, float]) -> Dict[str, Any]:
        """
        Hold a button for hold_ms milliseconds

        The hub does not answer either half, so the acknowledgment is built
        locally once the release frame is sent.

        Args:
            action: Function action, JSON string or dict
            hold_ms: Time between press and release in milliseconds, sent as whole milliseconds

        Returns:
            {'cmd', 'code': 200, 'id', 'msg': 'OK'}
        """
        if hold_ms < 0:
            raise ValueError(f"hold_ms must not be negative, got {hold_ms}")

        transport = await self._ensure_open()
        encoded = _encode_action(action)

        press = transport.envelope(HOLD_ACTION_CMD, {
            "status": "press",
            "timestamp": "0",
            "verb": "render",
            "action": encoded
        })
        await transport.send_fire_and_forget(press)

        await asyncio.sleep(hold_ms / 1000)

        release = transport.envelope(HOLD_ACTION_CMD, {
            "status": "release",
            "timestamp": str(int(hold_ms)),
            "verb": "render",
            "action": encoded
        })
        await transport.send_fire_and_forget(release)

        return {
            "cmd": HOLD_ACTION_CMD,
            "code": 200,
            "id": NO_REPLY_ID,
            "msg": "OK"
        }

    async def send_automation_command(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """Set automation device state, e.g. {'hue-light.1': {'on': True}}"""
        return await self.request(AUTOMATION_SET_CMD, {"state": dict(state)})
