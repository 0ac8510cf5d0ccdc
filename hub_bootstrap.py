#!/usr/bin/env python3
"""
HTTP bootstrap for the Harmony Hub WebSocket session

The hub answers a provisioning request on its local HTTP port with the
identifiers needed to open the WebSocket: the active remote id and the
discovery server whose hostname becomes the 'domain' query parameter.
"""

import asyncio
import json
import random
import logging
import functools
from dataclasses import dataclass
from typing import Callable, Any
from urllib.parse import urlsplit

import aiohttp

from hub_config import DEFAULT_HUB_PORT, DEFAULT_CONNECT_TIMEOUT
from hub_errors import NetworkError, ProtocolError

# Set up logging
logger = logging.getLogger(__name__)

HUB_ORIGIN = "http://sl.dhg.myharmony.com"
PROVISION_REQUEST = {
    "id": 1,
    "cmd": "setup.account?getProvisionInfo",
    "params": {}
}


@dataclass(frozen=True)
class HubIdentity:
    """Session-routing identifiers of a hub, fixed for one connection"""
    remote_id: str
    discovery_domain: str


def network_retry(max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 5.0):
    """
    Decorator for bootstrap calls with exponential backoff retry logic.

    Only NetworkError is retried; protocol errors are returned to the caller
    on the first attempt.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 0.5)
        max_delay: Maximum delay in seconds between retries (default: 5.0)

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except NetworkError as e:
                    # Don't retry on the last attempt
                    if attempt == max_attempts - 1:
                        raise

                    delay = min(base_delay * (2 ** attempt), max_delay)
                    # Add some jitter to prevent thundering herd
                    total_delay = delay + random.uniform(0, 0.1 * delay)

                    logger.info(f"Bootstrap attempt {attempt + 1}/{max_attempts} failed, retrying in {total_delay:.2f}s: {e}")
                    await asyncio.sleep(total_delay)

        return wrapper
    return decorator


def parse_provision_info(body: str) -> HubIdentity:
    """
    Extract the hub identity from a provisioning reply

    Args:
        body: Raw response text

    Returns:
        HubIdentity with the remote id and discovery server hostname

    Raises:
        ProtocolError: body is not JSON or lacks the expected fields
    """
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ProtocolError(f"Provisioning reply is not JSON: {e}") from e

    data = payload.get('data') if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        raise ProtocolError("Provisioning reply missing 'data' field")

    remote_id = data.get('activeRemoteId')
    discovery_server = data.get('discoveryServer')
    if remote_id in (None, ''):
        raise ProtocolError("Provisioning reply missing 'activeRemoteId'")
    if not isinstance(discovery_server, str) or not discovery_server:
        raise ProtocolError("Provisioning reply missing 'discoveryServer'")

    domain = urlsplit(discovery_server).hostname
    if not domain:
        raise ProtocolError(f"Discovery server has no hostname: {discovery_server!r}")

    return HubIdentity(remote_id=str(remote_id), discovery_domain=domain)


async def resolve_hub_identity(session: aiohttp.ClientSession, host: str,
                               port: int = DEFAULT_HUB_PORT,
                               timeout: float = DEFAULT_CONNECT_TIMEOUT) -> HubIdentity:
    """Ask the hub at host:port for its remote id and discovery domain."""
    url = f"http://{host}:{port}/"
    headers = {
        'Origin': HUB_ORIGIN,
        'Content-Type': 'application/json',
        'Accept': 'application/json',
        'Accept-Charset': 'utf-8'
    }

    logger.debug(f"Requesting provision info from {url}")
    try:
        async with session.post(url, data=json.dumps(PROVISION_REQUEST), headers=headers,
                                timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            body = await response.text()
    except asyncio.TimeoutError as e:
        raise NetworkError(f"Hub at {host}:{port} did not answer within {timeout}s") from e
    except (aiohttp.ClientError, OSError) as e:
        raise NetworkError(f"Bootstrap request to {host}:{port} failed: {e}") from e

    identity = parse_provision_info(body)
    logger.info(f"Hub {host} resolved: remote_id={identity.remote_id} domain={identity.discovery_domain}")
    return identity
