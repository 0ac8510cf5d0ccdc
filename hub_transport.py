#!/usr/bin/env python3
"""
WebSocket session with the Harmony Hub

SessionTransport owns one socket for its whole life. Outgoing requests get a
fresh integer id in 'hbus.id'; the reader task resolves the pending future
whose id the reply echoes. Push notifications are recognised by their 'type'
and handed to the PushDispatcher, so they can never complete a request.
"""

import json
import asyncio
import logging
from enum import Enum
from typing import Dict, Any, Optional

import aiohttp

from hub_bootstrap import HubIdentity
from hub_config import HubConfig
from hub_errors import ConnectError, HubTimeoutError, TransportClosed
from hub_events import EventBus, HubEvent
from hub_heartbeat import HeartbeatMonitor
from push_dispatcher import PushDispatcher, classify

# Set up logging
logger = logging.getLogger(__name__)

STATE_DIGEST_CMD = "vnd.logitech.connect/vnd.logitech.statedigest?get"
# Timeout advertised to the hub inside each envelope, in seconds
ENVELOPE_TIMEOUT = 30
# Frames that expect no reply carry this id; requests are numbered from 1
NO_REPLY_ID = 0


class SessionState(Enum):
    """Lifecycle of a session; CLOSED is terminal"""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class SessionTransport:
    """Single-use WebSocket session with request/reply correlation"""

    def __init__(self, http_session: aiohttp.ClientSession, host: str,
                 config: Optional[HubConfig] = None, events: Optional[EventBus] = None):
        self._http = http_session
        self.host = host
        self.config = config or HubConfig()
        self.events = events or EventBus()
        self.dispatcher = PushDispatcher(self.events)
        self.identity: Optional[HubIdentity] = None
        self.state = SessionState.IDLE

        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._last_id = NO_REPLY_ID
        self._heartbeat = HeartbeatMonitor(self._send_frame, self.close, self.config.heartbeat_interval)

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    def ws_url(self, identity: HubIdentity) -> str:
        return (f"ws://{self.host}:{self.config.port}/"
                f"?domain={identity.discovery_domain}&hubId={identity.remote_id}")

    def envelope(self, cmd: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Build an outbound envelope for a hub verb"""
        if self.identity is None:
            raise TransportClosed("Session has no hub identity yet")
        return {
            "hubId": self.identity.remote_id,
            "timeout": ENVELOPE_TIMEOUT,
            "hbus": {
                "cmd": cmd,
                "id": NO_REPLY_ID,
                "params": params
            }
        }

    async def open(self, identity: HubIdentity):
        """
        Connect the WebSocket and request the initial state digest

        Args:
            identity: Identifiers returned by the bootstrap call

        Raises:
            ConnectError: socket not established within the connect timeout
            TransportClosed: this transport was already used
        """
        if self.state is not SessionState.IDLE:
            raise TransportClosed(f"Session is {self.state.value}, open a new session to reconnect")

        self.state = SessionState.CONNECTING
        self.identity = identity
        url = self.ws_url(identity)
        timeout = self.config.connect_timeout

        logger.info(f"Opening hub session {url}")
        try:
            async with asyncio.timeout(timeout):
                self._ws = await self._http.ws_connect(url)
        except TimeoutError as e:
            await self.close()
            raise ConnectError(f"WebSocket to {self.host} not established within {timeout}s") from e
        except (aiohttp.ClientError, OSError) as e:
            await self.close()
            raise ConnectError(f"WebSocket to {self.host} failed: {e}") from e

        if self.state is not SessionState.CONNECTING:
            ws, self._ws = self._ws, None
            await ws.close()
            raise TransportClosed("Session closed while connecting")

        self._reader = asyncio.create_task(self._read_loop())

        digest = self.envelope(STATE_DIGEST_CMD, {"verb": "get", "format": "json"})
        try:
            await self._send_frame(json.dumps(digest))
        except (ConnectionError, aiohttp.ClientError, TransportClosed) as e:
            await self.close()
            raise ConnectError(f"Hub {self.host} dropped the session during handshake: {e}") from e

        if self.state is not SessionState.CONNECTING:
            raise ConnectError(f"Hub {self.host} closed the session during handshake")

        self.state = SessionState.OPEN
        self._heartbeat.start()
        logger.info(f"Hub session open (remote_id={identity.remote_id})")
        self.events.emit(HubEvent.OPEN)

    async def request(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send an envelope and wait for the reply carrying the same id

        Args:
            envelope: Outbound envelope; its 'hbus.id' is overwritten

        Returns:
            The hub reply

        Raises:
            HubTimeoutError: no reply within the send timeout
            TransportClosed: session not open, or closed while waiting
        """
        self._require_open()

        self._last_id += 1
        request_id = self._last_id
        envelope["hbus"]["id"] = request_id
        key = str(request_id)
        cmd = envelope["hbus"].get("cmd")

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            await self._send_frame(json.dumps(envelope))
            async with asyncio.timeout(self.config.send_timeout):
                return await future
        except TimeoutError as e:
            raise HubTimeoutError(
                f"No reply to '{cmd}' (id {request_id}) within {self.config.send_timeout}s") from e
        except (ConnectionError, aiohttp.ClientError) as e:
            raise TransportClosed(f"Sending '{cmd}' failed: {e}") from e
        finally:
            self._pending.pop(key, None)

    async def send_fire_and_forget(self, envelope: Dict[str, Any]):
        """Send an envelope that expects no reply"""
        self._require_open()
        envelope["hbus"]["id"] = NO_REPLY_ID
        try:
            await self._send_frame(json.dumps(envelope))
        except (ConnectionError, aiohttp.ClientError) as e:
            raise TransportClosed(f"Sending '{envelope['hbus'].get('cmd')}' failed: {e}") from e

    async def close(self):
        """Tear the session down. Safe to call any number of times from any path."""
        if self.state is SessionState.CLOSED:
            return
        was_open = self.state is SessionState.OPEN
        self.state = SessionState.CLOSED

        self._heartbeat.stop()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()

        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(TransportClosed("Session closed before the hub replied"))

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (ConnectionError, aiohttp.ClientError) as e:
                logger.debug(f"Ignoring error while closing socket: {e!r}")

        logger.info(f"Hub session closed ({len(pending)} pending request(s) abandoned)")
        if was_open:
            self.events.emit(HubEvent.CLOSE)

    def handle_message(self, message: Dict[str, Any]):
        """Route one decoded inbound message to its request or to the dispatcher"""
        if classify(message) is None and message.get("id") is not None:
            future = self._pending.pop(str(message["id"]), None)
            if future is not None:
                if not future.done():
                    future.set_result(message)
                return
        self.dispatcher.dispatch(message)

    def _require_open(self):
        if self.state is not SessionState.OPEN:
            raise TransportClosed(f"Session is {self.state.value}")

    async def _send_frame(self, text: str):
        ws = self._ws
        if ws is None:
            raise TransportClosed("No socket")
        logger.debug(f"-> {text}")
        await ws.send_str(text)

    def _on_text(self, text: str):
        if not text:
            return
        logger.debug(f"<- {text}")
        try:
            message = json.loads(text)
        except ValueError:
            logger.warning(f"Dropping non-JSON frame: {text[:80]!r}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object frame: {text[:80]!r}")
            return
        self.handle_message(message)

    async def _read_loop(self):
        ws = self._ws
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._on_text(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning(f"WebSocket error: {ws.exception()!r}")
                break

        if self.state is not SessionState.CLOSED:
            logger.info(f"Hub {self.host} closed the WebSocket")
            await self.close()
