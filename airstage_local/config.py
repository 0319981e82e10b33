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

"""Configuration models for Airstage Local.

A configuration file is JSON, for example::

    {
        "devices": [
            {"ip_address": "192.168.1.50", "name": "Living Room"},
            {"ip_address": "192.168.1.51", "device_id": "a0:b1:c2:d3:e4:f5", "poll_interval": 60}
        ],
        "enable_economy_switch": true
    }
"""

import ipaddress
import json
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .const import DEFAULT_POLL_INTERVAL
from .exceptions import ConfigurationError
from .registry import is_valid_device_id, normalize_device_id


def is_valid_ipv4(address: str) -> bool:
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


class DeviceConfig(BaseModel):
    """One indoor unit."""

    model_config = ConfigDict(extra='forbid')

    ip_address: str
    device_id: Optional[str] = None
    device_sub_id: int = Field(default=0, ge=0)
    name: Optional[str] = None
    poll_interval: int = Field(default=DEFAULT_POLL_INTERVAL, ge=0)

    @field_validator('ip_address', mode='before')
    @classmethod
    def _check_ip_address(cls, value: Any) -> Any:
        value = str(value).strip() if value is not None else value
        if not value or not is_valid_ipv4(value):
            raise ValueError(f"invalid IPv4 address: {value!r}")
        return value

    @field_validator('device_id', mode='before')
    @classmethod
    def _normalize_device_id(cls, value: Any) -> Any:
        if value is None or str(value).strip() == '':
            return None
        normalized = normalize_device_id(value)
        if not is_valid_device_id(normalized):
            raise ValueError(f"invalid device ID {value!r}: expected 12 hexadecimal digits")
        return normalized

    @property
    def display_name(self) -> str:
        return self.name or self.device_id or self.ip_address


class RejectedDevice(BaseModel):
    """A device entry that failed validation and is left out of the setup."""

    ip_address: Optional[str] = None
    name: Optional[str] = None
    reason: str

    @property
    def display_name(self) -> str:
        return self.name or self.ip_address or 'unnamed device'


class PlatformConfig(BaseModel):
    """All devices plus which accessories to publish for each of them."""

    model_config = ConfigDict(extra='ignore')

    devices: List[DeviceConfig] = Field(default_factory=list)
    rejected_devices: List[RejectedDevice] = Field(default_factory=list)
    enable_thermostat: bool = True
    enable_fan: bool = True
    enable_powerful_switch: bool = False
    enable_economy_switch: bool = False
    enable_energy_saving_fan_switch: bool = False
    enable_minimum_heat_mode_switch: bool = False

    def enabled_suffixes(self) -> List[str]:
        """Accessory suffixes to publish, in registration order."""
        flags = [
            ('thermostat', self.enable_thermostat),
            ('fan', self.enable_fan),
            ('powerful', self.enable_powerful_switch),
            ('economy', self.enable_economy_switch),
            ('energy-saving-fan', self.enable_energy_saving_fan_switch),
            ('minimum-heat-mode', self.enable_minimum_heat_mode_switch),
        ]
        return [suffix for suffix, enabled in flags if enabled]


def _describe_errors(error: ValidationError) -> str:
    return '; '.join(
        f"{'.'.join(str(part) for part in err['loc']) or 'device'}: {err['msg']}"
        for err in error.errors()
    )


def _reject(entry: Any, error: ValidationError) -> RejectedDevice:
    fields = entry if isinstance(entry, dict) else {}
    ip_address = fields.get('ip_address')
    name = fields.get('name')
    return RejectedDevice(
        ip_address=str(ip_address) if ip_address is not None else None,
        name=str(name) if name is not None else None,
        reason=f"Invalid device configuration: {_describe_errors(error)}",
    )


def parse_config(data: Any) -> PlatformConfig:
    """Validate a configuration document.

    Each device entry is validated on its own. Entries that fail end up in
    ``rejected_devices`` so the remaining devices still start; only a
    malformed document as a whole raises ConfigurationError.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Invalid configuration: expected a JSON object")
    entries = data.get('devices', [])
    if not isinstance(entries, list):
        raise ConfigurationError("Invalid configuration: 'devices' must be a list")

    devices = []
    rejected = []
    for entry in entries:
        try:
            devices.append(DeviceConfig.model_validate(entry))
        except ValidationError as e:
            rejected.append(_reject(entry, e))

    settings = {key: value for key, value in data.items() if key not in ('devices', 'rejected_devices')}
    try:
        config = PlatformConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    config.devices = devices
    config.rejected_devices = rejected
    return config


def load_config(path: Union[str, Path]) -> PlatformConfig:
    """Read and validate a JSON configuration file."""
    path = Path(path).expanduser()
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {path}") from e
    except ValueError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e
    return parse_config(data)
