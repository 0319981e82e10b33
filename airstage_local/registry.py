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

"""Registry of the indoor units this process talks to."""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List

from .exceptions import ConfigurationError, DeviceNotFoundError

logger = logging.getLogger(__name__)

DEVICE_ID_PATTERN = re.compile(r'^[A-F0-9]{12}$')


def normalize_device_id(device_id: str) -> str:
    """Uppercase a MAC-style identifier and strip separators."""
    return str(device_id).strip().upper().replace(':', '').replace('-', '')


def is_valid_device_id(device_id: str) -> bool:
    return bool(DEVICE_ID_PATTERN.match(device_id or ''))


@dataclass(frozen=True)
class DeviceRecord:
    """Identity and address of one indoor unit."""
    device_id: str
    device_sub_id: int
    ip_address: str
    name: str

    def to_dict(self) -> dict:
        return {
            'device_id': self.device_id,
            'device_sub_id': self.device_sub_id,
            'ip_address': self.ip_address,
            'name': self.name,
        }


class DeviceRegistry:
    """Maps normalized device identifiers to device records.

    Populated once at startup and read-only afterwards.
    """

    def __init__(self):
        self._devices: Dict[str, DeviceRecord] = {}

    def register(self, records: Iterable[DeviceRecord]) -> List[DeviceRecord]:
        """Normalize and store records.

        Raises ConfigurationError on the first malformed identifier; records
        before it stay registered.
        """
        registered = []
        for record in records:
            device_id = normalize_device_id(record.device_id)
            if not is_valid_device_id(device_id):
                raise ConfigurationError(
                    f"Invalid device ID '{record.device_id}' for {record.name}: "
                    "expected 12 hexadecimal digits (MAC address)"
                )
            if device_id != record.device_id:
                record = DeviceRecord(device_id, record.device_sub_id, record.ip_address, record.name)
            if device_id in self._devices:
                logger.warning(f"Device {device_id} registered twice, keeping the latest entry ({record.ip_address})")
            self._devices[device_id] = record
            registered.append(record)
            logger.debug(f"Registered device {device_id} ({record.name}) at {record.ip_address}")
        return registered

    def get(self, device_id: str) -> DeviceRecord:
        """Look up a device by identifier in any supported format."""
        try:
            return self._devices[normalize_device_id(device_id)]
        except KeyError:
            raise DeviceNotFoundError(device_id) from None

    def all(self) -> List[DeviceRecord]:
        return list(self._devices.values())

    def __contains__(self, device_id) -> bool:
        return normalize_device_id(device_id) in self._devices

    def __len__(self) -> int:
        return len(self._devices)
