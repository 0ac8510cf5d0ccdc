#!/usr/bin/env python3
"""
Shared fakes for the Harmony client tests

FakeWebSocket stands in for aiohttp's ClientWebSocketResponse and
FakeHttpSession for the ClientSession; make_hub_app builds a real aiohttp.web
application that speaks the hub protocol for end-to-end tests.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Callable, Dict, Any, List, Optional

import aiohttp
from aiohttp import web

from hub_bootstrap import HubIdentity
from hub_config import HubConfig
from hub_transport import SessionTransport, STATE_DIGEST_CMD

HUB_IP = "192.168.1.20"
REMOTE_ID = "001122"
DISCOVERY_SERVER = "https://svcs.myharmony.com"
IDENTITY = HubIdentity(remote_id=REMOTE_ID, discovery_domain="svcs.myharmony.com")
PROVISION_BODY = {"data": {"activeRemoteId": REMOTE_ID, "discoveryServer": DISCOVERY_SERVER}}


def default_reply(frame: Dict[str, Any]) -> Dict[str, Any]:
    hbus = frame["hbus"]
    return {"cmd": hbus["cmd"], "code": 200, "id": hbus["id"], "msg": "OK", "data": {}}


class FakeWebSocket:
    """In-memory client websocket; replies are pushed into the inbox"""

    def __init__(self, responder: Optional[Callable] = default_reply):
        self.sent: List[str] = []
        self.closed = False
        self.fail_sends = False
        self.responder = responder
        self.replies: Dict[str, Any] = {}
        self._inbox = asyncio.Queue()

    async def send_str(self, data: str):
        if self.fail_sends or self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)
        if not data or self.responder is None:
            return
        frame = json.loads(data)
        if frame["hbus"]["id"]:
            reply = self.responder(frame)
            if reply is not None:
                cmd = frame["hbus"]["cmd"]
                if cmd in self.replies:
                    reply["data"] = self.replies[cmd]
                self.push(reply)

    def push(self, message: Dict[str, Any]):
        self.push_raw(json.dumps(message))

    def push_raw(self, text: str):
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def hang_up(self):
        """Simulate the hub closing the connection"""
        self._inbox.put_nowait(None)

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)
        return True

    def exception(self):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg

    @property
    def frames(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent if text]

    def requests(self) -> List[Dict[str, Any]]:
        """Frames that expect a reply"""
        return [frame for frame in self.frames if frame["hbus"]["id"]]

    def frames_for(self, cmd: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.frames if frame["hbus"]["cmd"] == cmd]


class FakeResponse:
    def __init__(self, body: str, status: int = 200, delay: float = 0.0):
        self.body = body
        self.status = status
        self.delay = delay

    async def __aenter__(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientError(f"HTTP {self.status}")

    async def text(self):
        return self.body


class FakeHttpSession:
    """Answers the bootstrap POST and hands out websockets"""

    def __init__(self, ws: Optional[FakeWebSocket] = None, provision: Optional[Dict] = None):
        self.ws = ws if ws is not None else FakeWebSocket()
        self.provision = provision or PROVISION_BODY
        self.posts = []
        self.ws_urls: List[str] = []
        self.post_delay = 0.0
        self.connect_delay = 0.0
        self.connect_error: Optional[Exception] = None
        self.closed = False

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return FakeResponse(json.dumps(self.provision), delay=self.post_delay)

    async def ws_connect(self, url, **kwargs):
        self.ws_urls.append(url)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        return self.ws

    async def close(self):
        self.closed = True


async def open_transport(ws: FakeWebSocket, **settings) -> SessionTransport:
    transport = SessionTransport(FakeHttpSession(ws), HUB_IP, HubConfig(**settings))
    await transport.open(IDENTITY)
    return transport


def make_hub_app(provision: Optional[Dict] = None, config_data: Optional[Dict] = None):
    """
    Minimal hub: answers the provisioning POST, pushes a state digest after the
    initial digest request and echoes every request id. The 'test.hangup' verb
    closes the socket without replying.

    Returns:
        Tuple of (application, record of what the hub received)
    """
    app = web.Application()
    record = SimpleNamespace(provision_requests=[], ws_queries=[], frames=[])

    async def provision_handler(request):
        record.provision_requests.append((request.headers.copy(), await request.json()))
        return web.json_response(provision or PROVISION_BODY)

    async def socket_handler(request):
        record.ws_queries.append(request.query_string)
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT or not msg.data:
                continue
            frame = json.loads(msg.data)
            record.frames.append(frame)
            hbus = frame['hbus']
            if hbus['cmd'] == STATE_DIGEST_CMD:
                await ws.send_json({"type": "connect.stateDigest?notify",
                                    "data": {"activityId": "-1", "activityStatus": 0}})
            elif hbus['cmd'] == 'test.hangup':
                await ws.close()
            elif hbus['id']:
                data = config_data if hbus['cmd'].endswith('?config') else {"result": "-1"}
                await ws.send_json({"cmd": hbus['cmd'], "code": 200, "id": hbus['id'],
                                    "msg": "OK", "data": data or {}})
        return ws

    app.router.add_post('/', provision_handler)
    app.router.add_get('/', socket_handler)
    return app, record
