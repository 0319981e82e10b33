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

"""Exceptions raised by Airstage Local."""

import asyncio
import errno
from typing import Optional

# errno values that mean the device could not be reached at all
UNREACHABLE_ERRNOS = frozenset({
    errno.ECONNREFUSED,
    errno.EHOSTUNREACH,
    errno.ETIMEDOUT,
    errno.ENETUNREACH,
})


class AirstageError(Exception):
    """Base class for all Airstage Local errors."""


class ConfigurationError(AirstageError):
    """Invalid device identifier, address or configuration file."""


class DeviceNotFoundError(AirstageError):
    """Lookup of a device identifier that is not in the registry."""

    def __init__(self, device_id: str):
        super().__init__(f"Device {device_id} not found")
        self.device_id = device_id


class TransportError(AirstageError):
    """The device could not be reached."""

    def __init__(self, message: str, *, device_name: Optional[str] = None,
                 ip_address: Optional[str] = None, endpoint: Optional[str] = None,
                 code: Optional[str] = None):
        super().__init__(message)
        self.device_name = device_name
        self.ip_address = ip_address
        self.endpoint = endpoint
        self.code = code


class DeviceTimeoutError(TransportError):
    """No response within the request timeout."""


class DeviceConnectionError(TransportError):
    """Connection refused, host unreachable or a similar socket failure."""


class ProtocolError(AirstageError):
    """The device answered, but not with a successful result."""

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class MalformedResponseError(ProtocolError):
    """The response body could not be parsed as JSON."""

    def __init__(self, message: str, *, status: Optional[int] = None, preview: str = ''):
        super().__init__(message)
        self.status = status
        self.preview = preview


class CodecError(AirstageError, ValueError):
    """A raw value could not be decoded."""


def is_unreachable_error(err: BaseException) -> bool:
    """Return True if the error means the device is offline or unreachable.

    Used to drive the accessory fault indicator. Errors from our own transport
    are classified by type; foreign socket errors by errno.
    """
    if isinstance(err, TransportError):
        return True
    if isinstance(err, (TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(err, OSError) and err.errno in UNREACHABLE_ERRNOS:
        return True
    return False
