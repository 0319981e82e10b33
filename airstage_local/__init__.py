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
"""Airstage Local - REST API for Fujitsu Airstage air conditioners on the local network."""

from .__version__ import __version__

__author__ = "Airstage Local Contributors"
__description__ = "REST API for Fujitsu Airstage air conditioners on the local network"

from .exceptions import (
    AirstageError,
    CodecError,
    ConfigurationError,
    DeviceConnectionError,
    DeviceNotFoundError,
    DeviceTimeoutError,
    MalformedResponseError,
    ProtocolError,
    TransportError,
)
from .registry import DeviceRecord, DeviceRegistry
from .scheduler import RequestScheduler
from .transport import LocalTransport
from .client import LocalClient
from .cache import CharacteristicStateCache
from .sync import CharacteristicSynchronizer
from .platform import AirstagePlatform
from . import codec, homekit

__all__ = [
    "__version__",
    "AirstageError",
    "CodecError",
    "ConfigurationError",
    "DeviceConnectionError",
    "DeviceNotFoundError",
    "DeviceTimeoutError",
    "MalformedResponseError",
    "ProtocolError",
    "TransportError",
    "DeviceRecord",
    "DeviceRegistry",
    "RequestScheduler",
    "LocalTransport",
    "LocalClient",
    "CharacteristicStateCache",
    "CharacteristicSynchronizer",
    "AirstagePlatform",
    "codec",
    "homekit",
]
