#!/usr/bin/env python3
"""
Error taxonomy for the Harmony Hub WebSocket client
"""


class HarmonyError(Exception):
    """Base class for every error raised by the client"""


class NetworkError(HarmonyError):
    """The HTTP bootstrap call could not complete"""


class ConnectError(HarmonyError):
    """The WebSocket session could not be established in time"""


class HubTimeoutError(HarmonyError, TimeoutError):
    """No reply arrived for a request within the send timeout"""


class ProtocolError(HarmonyError):
    """A hub response is malformed or lacks an expected field"""


class TransportClosed(HarmonyError):
    """Operation attempted on a session that is not open"""
