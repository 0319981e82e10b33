#
# Copyright 2025 The AirstageLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""HTTP transport to the indoor unit's WLAN adapter."""

import asyncio
import errno
import json
import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from .const import DEFAULT_PORT, DEFAULT_TIMEOUT
from .exceptions import (
    DeviceConnectionError,
    DeviceTimeoutError,
    MalformedResponseError,
    ProtocolError,
)
from .models import ParamResponse
from .registry import DeviceRecord

logger = logging.getLogger('airstage-local')

PREVIEW_LENGTH = 100

_HINTS = {
    'ECONNREFUSED': "the device refused the connection; check that local control is enabled on the WLAN adapter",
    'EHOSTUNREACH': "no route to the device; check the IP address and that the unit is powered",
    'ENETUNREACH': "network unreachable; check this host's network configuration",
    'ETIMEDOUT': "the device did not answer; it may be offline or on another subnet",
    'TIMEOUT': "the device did not answer in time; it may be busy, offline or on another subnet",
}


def _errno_name(err: BaseException) -> Optional[str]:
    os_error = getattr(err, 'os_error', err)
    number = getattr(os_error, 'errno', None)
    if number is None:
        return None
    return errno.errorcode.get(number, str(number))


class LocalTransport:
    """Sends one JSON request per fresh HTTP connection.

    The adapter's HTTP stack misbehaves with keep-alive, so each exchange
    opens its own connector and closes it afterwards.
    """

    def __init__(self, port: int = DEFAULT_PORT, timeout: float = DEFAULT_TIMEOUT):
        self.port = port
        self.timeout = timeout

    def _url(self, ip_address: str, endpoint: str) -> str:
        if self.port == 80:
            return f"http://{ip_address}{endpoint}"
        return f"http://{ip_address}:{self.port}{endpoint}"

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(force_close=True, limit=1),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    async def send(self, device: DeviceRecord, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a request envelope and return the decoded value map.

        Raises:
            DeviceTimeoutError: no response within the timeout
            DeviceConnectionError: the device could not be reached
            MalformedResponseError: the body is not a JSON object
            ProtocolError: the device answered with a non-OK result
        """
        url = self._url(device.ip_address, endpoint)
        context = dict(device_name=device.name, ip_address=device.ip_address, endpoint=endpoint)
        logger.debug(f"{device.name}: POST {url} {json.dumps(payload)}")

        try:
            async with self._session() as session:
                async with session.post(url, json=payload, headers={'Connection': 'close'}) as resp:
                    status = resp.status
                    body = await resp.text()
        except asyncio.TimeoutError as e:
            hint = _HINTS['TIMEOUT']
            raise DeviceTimeoutError(
                f"Request timeout ({int(self.timeout * 1000)}ms) for {device.name} "
                f"({device.ip_address}) on {endpoint}: {hint}",
                code='TIMEOUT', **context) from e
        except aiohttp.ClientConnectorError as e:
            code = _errno_name(e) or 'ECONNECT'
            hint = _HINTS.get(code, "check that the device is powered and reachable")
            raise DeviceConnectionError(
                f"Request to {device.name} ({device.ip_address}) on {endpoint} failed "
                f"[{code}]: {e}. Hint: {hint}",
                code=code, **context) from e
        except aiohttp.ClientError as e:
            code = _errno_name(e) or type(e).__name__
            raise DeviceConnectionError(
                f"Request to {device.name} ({device.ip_address}) on {endpoint} failed [{code}]: {e}",
                code=code, **context) from e

        preview = body[:PREVIEW_LENGTH]
        logger.debug(f"{device.name}: {endpoint} -> HTTP {status} {preview}")

        try:
            data = json.loads(body)
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON from {device.name} ({device.ip_address}) on {endpoint} "
                f"(HTTP {status}): {preview!r}",
                status=status, preview=preview) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Unexpected response from {device.name} ({device.ip_address}) on {endpoint} "
                f"(HTTP {status}): {preview!r}",
                status=status, preview=preview)

        try:
            response = ParamResponse.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Malformed response from {device.name} ({device.ip_address}) on {endpoint} "
                f"(HTTP {status}): {preview!r}",
                status=status, preview=preview) from e
        if not response.ok:
            raise ProtocolError(f"API Error: {response.error}", code=response.error)

        if response.value is not None:
            return response.value
        return data

    async def probe(self, ip_address: str) -> int:
        """GET the device root page and return the HTTP status.

        Any HTTP answer means the host is up (and now in the ARP table).
        """
        url = self._url(ip_address, '/')
        try:
            async with self._session() as session:
                async with session.get(url, headers={'Connection': 'close'}) as resp:
                    return resp.status
        except asyncio.TimeoutError as e:
            raise DeviceTimeoutError(
                f"Connectivity check timed out for {ip_address}",
                ip_address=ip_address, endpoint='/', code='TIMEOUT') from e
        except aiohttp.ClientError as e:
            code = _errno_name(e) or type(e).__name__
            raise DeviceConnectionError(
                f"Connectivity check failed for {ip_address} [{code}]: {e}",
                ip_address=ip_address, endpoint='/', code=code) from e
