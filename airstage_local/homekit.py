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

"""
HomeKit-style accessory model exposed by Airstage Local.

Only the slice of the HomeKit object model the indoor units need: services,
characteristics with get/set handlers and event notifications, and a host
that keeps accessories registered under a stable identifier.

UUIDs and value numbering follow Apple's HomeKit Accessory Protocol, so
clients that know HomeKit can interpret the REST output directly.
"""

import asyncio
import itertools
import json
import logging
import time
import uuid as _uuid
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

_UNSET = object()

# === SERVICES ===
SERVICE_ACCESSORY_INFORMATION = "0000003E-0000-1000-8000-0026BB765291"
SERVICE_SWITCH = "00000049-0000-1000-8000-0026BB765291"
SERVICE_THERMOSTAT = "0000004A-0000-1000-8000-0026BB765291"
SERVICE_FANV2 = "000000B7-0000-1000-8000-0026BB765291"

HOMEKIT_SERVICES = {
    SERVICE_ACCESSORY_INFORMATION: "AccessoryInformation",
    SERVICE_SWITCH: "Switch",
    SERVICE_THERMOSTAT: "Thermostat",
    SERVICE_FANV2: "Fanv2",
}

# === CHARACTERISTICS ===
CHAR_MANUFACTURER = "00000020-0000-1000-8000-0026BB765291"
CHAR_MODEL = "00000021-0000-1000-8000-0026BB765291"
CHAR_NAME = "00000023-0000-1000-8000-0026BB765291"
CHAR_SERIAL_NUMBER = "00000030-0000-1000-8000-0026BB765291"
CHAR_FIRMWARE_REVISION = "00000052-0000-1000-8000-0026BB765291"
CHAR_STATUS_FAULT = "00000077-0000-1000-8000-0026BB765291"
CHAR_CURRENT_HEATING_COOLING_STATE = "0000000F-0000-1000-8000-0026BB765291"
CHAR_TARGET_HEATING_COOLING_STATE = "00000033-0000-1000-8000-0026BB765291"
CHAR_CURRENT_TEMPERATURE = "00000011-0000-1000-8000-0026BB765291"
CHAR_TARGET_TEMPERATURE = "00000035-0000-1000-8000-0026BB765291"
CHAR_TEMPERATURE_DISPLAY_UNITS = "00000036-0000-1000-8000-0026BB765291"
CHAR_ON = "00000025-0000-1000-8000-0026BB765291"
CHAR_ACTIVE = "000000B0-0000-1000-8000-0026BB765291"
CHAR_CURRENT_FAN_STATE = "000000AF-0000-1000-8000-0026BB765291"
CHAR_TARGET_FAN_STATE = "000000BF-0000-1000-8000-0026BB765291"
CHAR_ROTATION_SPEED = "00000029-0000-1000-8000-0026BB765291"
CHAR_SWING_MODE = "000000B6-0000-1000-8000-0026BB765291"

HOMEKIT_CHARACTERISTICS = {
    CHAR_MANUFACTURER: "Manufacturer",
    CHAR_MODEL: "Model",
    CHAR_NAME: "Name",
    CHAR_SERIAL_NUMBER: "SerialNumber",
    CHAR_FIRMWARE_REVISION: "FirmwareRevision",
    CHAR_STATUS_FAULT: "StatusFault",
    CHAR_CURRENT_HEATING_COOLING_STATE: "CurrentHeatingCoolingState",
    CHAR_TARGET_HEATING_COOLING_STATE: "TargetHeatingCoolingState",
    CHAR_CURRENT_TEMPERATURE: "CurrentTemperature",
    CHAR_TARGET_TEMPERATURE: "TargetTemperature",
    CHAR_TEMPERATURE_DISPLAY_UNITS: "TemperatureDisplayUnits",
    CHAR_ON: "On",
    CHAR_ACTIVE: "Active",
    CHAR_CURRENT_FAN_STATE: "CurrentFanState",
    CHAR_TARGET_FAN_STATE: "TargetFanState",
    CHAR_ROTATION_SPEED: "RotationSpeed",
    CHAR_SWING_MODE: "SwingMode",
}

_CHARACTERISTICS_BY_NAME = {name: char_type for char_type, name in HOMEKIT_CHARACTERISTICS.items()}

# Format, permissions and default constraints per characteristic type
CHARACTERISTIC_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    CHAR_MANUFACTURER: {"format": "string", "perms": ["pr"]},
    CHAR_MODEL: {"format": "string", "perms": ["pr"]},
    CHAR_NAME: {"format": "string", "perms": ["pr"]},
    CHAR_SERIAL_NUMBER: {"format": "string", "perms": ["pr"]},
    CHAR_FIRMWARE_REVISION: {"format": "string", "perms": ["pr"]},
    CHAR_STATUS_FAULT: {"format": "uint8", "perms": ["pr", "ev"], "validValues": [0, 1]},
    CHAR_CURRENT_HEATING_COOLING_STATE: {"format": "uint8", "perms": ["pr", "ev"], "validValues": [0, 1, 2]},
    CHAR_TARGET_HEATING_COOLING_STATE: {"format": "uint8", "perms": ["pr", "pw", "ev"], "validValues": [0, 1, 2, 3]},
    CHAR_CURRENT_TEMPERATURE: {"format": "float", "perms": ["pr", "ev"], "minValue": -270, "maxValue": 100, "minStep": 0.1},
    CHAR_TARGET_TEMPERATURE: {"format": "float", "perms": ["pr", "pw", "ev"], "minValue": 10, "maxValue": 38, "minStep": 0.1},
    CHAR_TEMPERATURE_DISPLAY_UNITS: {"format": "uint8", "perms": ["pr", "pw", "ev"], "validValues": [0, 1]},
    CHAR_ON: {"format": "bool", "perms": ["pr", "pw", "ev"]},
    CHAR_ACTIVE: {"format": "uint8", "perms": ["pr", "pw", "ev"], "validValues": [0, 1]},
    CHAR_CURRENT_FAN_STATE: {"format": "uint8", "perms": ["pr", "ev"], "validValues": [0, 1, 2]},
    CHAR_TARGET_FAN_STATE: {"format": "uint8", "perms": ["pr", "pw", "ev"], "validValues": [0, 1]},
    CHAR_ROTATION_SPEED: {"format": "float", "perms": ["pr", "pw", "ev"], "minValue": 0, "maxValue": 100, "minStep": 1},
    CHAR_SWING_MODE: {"format": "uint8", "perms": ["pr", "pw", "ev"], "validValues": [0, 1]},
}


# === VALUES ===

class CurrentHeatingCoolingState(IntEnum):
    OFF = 0
    HEAT = 1
    COOL = 2


class TargetHeatingCoolingState(IntEnum):
    OFF = 0
    HEAT = 1
    COOL = 2
    AUTO = 3


class TemperatureDisplayUnits(IntEnum):
    CELSIUS = 0
    FAHRENHEIT = 1


class StatusFault(IntEnum):
    NO_FAULT = 0
    GENERAL_FAULT = 1


class Active(IntEnum):
    INACTIVE = 0
    ACTIVE = 1


class CurrentFanState(IntEnum):
    INACTIVE = 0
    IDLE = 1
    BLOWING_AIR = 2


class TargetFanState(IntEnum):
    MANUAL = 0
    AUTO = 1


class SwingMode(IntEnum):
    SWING_DISABLED = 0
    SWING_ENABLED = 1


HOMEKIT_VALUES = {
    "CurrentHeatingCoolingState": {0: "Off", 1: "Heat", 2: "Cool"},
    "TargetHeatingCoolingState": {0: "Off", 1: "Heat", 2: "Cool", 3: "Auto"},
    "TemperatureDisplayUnits": {0: "Celsius", 1: "Fahrenheit"},
    "StatusFault": {0: "No Fault", 1: "General Fault"},
    "Active": {0: "Inactive", 1: "Active"},
    "CurrentFanState": {0: "Inactive", 1: "Idle", 2: "Blowing Air"},
    "TargetFanState": {0: "Manual", 1: "Auto"},
    "SwingMode": {0: "Swing Disabled", 1: "Swing Enabled"},
}


def get_service_name(uuid: str) -> str:
    """Convert HomeKit service UUID to human-readable name."""
    return HOMEKIT_SERVICES.get(uuid.upper(), uuid)


def get_characteristic_name(uuid: str) -> str:
    """Convert HomeKit characteristic UUID to human-readable name."""
    return HOMEKIT_CHARACTERISTICS.get(uuid.upper(), uuid)


def get_characteristic_type(name_or_uuid: str) -> Optional[str]:
    """Resolve a characteristic name (or UUID) to its UUID."""
    if name_or_uuid.upper() in HOMEKIT_CHARACTERISTICS:
        return name_or_uuid.upper()
    return _CHARACTERISTICS_BY_NAME.get(name_or_uuid)


def get_characteristic_value_name(characteristic_name: str, value) -> str:
    """Convert HomeKit characteristic value to human-readable name."""
    if characteristic_name in HOMEKIT_VALUES and value in HOMEKIT_VALUES[characteristic_name]:
        return HOMEKIT_VALUES[characteristic_name][value]
    return str(value)


def generate_uuid(data: str) -> str:
    """Stable accessory identifier derived from a string."""
    return str(_uuid.uuid5(_uuid.NAMESPACE_OID, data)).upper()


GetHandler = Callable[[], Awaitable[Any]]
SetHandler = Callable[[Any], Awaitable[Any]]
ChangeListener = Callable[['Characteristic', Any, Any], None]


class Characteristic:
    """A single observable property with optional get/set handlers."""

    def __init__(self, char_type: str, iid: int = 0):
        definition = CHARACTERISTIC_DEFINITIONS.get(char_type, {"format": "string", "perms": ["pr"]})
        self.type = char_type
        self.iid = iid
        self.format: str = definition["format"]
        self.perms: List[str] = list(definition["perms"])
        self.props: Dict[str, Any] = {k: v for k, v in definition.items() if k not in ("format", "perms")}
        self.value: Any = None
        self._get_handler: Optional[GetHandler] = None
        self._set_handler: Optional[SetHandler] = None
        self._listeners: List[ChangeListener] = []
        self._update_count = 0

    @property
    def name(self) -> str:
        return get_characteristic_name(self.type)

    def on_get(self, handler: GetHandler) -> 'Characteristic':
        self._get_handler = handler
        return self

    def on_set(self, handler: SetHandler) -> 'Characteristic':
        self._set_handler = handler
        return self

    def set_props(self, **props) -> 'Characteristic':
        self.props.update(props)
        return self

    def subscribe(self, listener: ChangeListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def validate(self, value: Any) -> Any:
        """Coerce a written value to this characteristic's format.

        Raises ValueError for values of the wrong type or out of range.
        """
        if self.format == "bool":
            if isinstance(value, bool):
                return value
            if value in (0, 1):
                return bool(value)
            raise ValueError(f"{self.name} expects a boolean, got {value!r}")

        if self.format in ("uint8", "int", "float"):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{self.name} expects a number, got {value!r}")
            if self.format != "float":
                if value != int(value):
                    raise ValueError(f"{self.name} expects an integer, got {value!r}")
                value = int(value)
            valid_values = self.props.get("validValues")
            if valid_values is not None and value not in valid_values:
                raise ValueError(f"{self.name} value {value} not in {valid_values}")
            min_value = self.props.get("minValue")
            max_value = self.props.get("maxValue")
            if min_value is not None and value < min_value:
                raise ValueError(f"{self.name} value {value} below minimum {min_value}")
            if max_value is not None and value > max_value:
                raise ValueError(f"{self.name} value {value} above maximum {max_value}")
            return value

        return str(value)

    async def handle_get(self) -> Any:
        """Run the get handler (if any) and return the current value."""
        if self._get_handler is not None:
            self.value = await self._get_handler()
        return self.value

    async def handle_set(self, value: Any):
        """Validate a write and run the set handler."""
        if "pw" not in self.perms:
            raise PermissionError(f"{self.name} is read-only")
        value = self.validate(value)
        updates = self._update_count
        if self._set_handler is not None:
            await self._set_handler(value)
        # The handler may have pushed the value the device applied instead
        if self._update_count == updates:
            self.value = value

    def update_value(self, value: Any, previous: Any = _UNSET):
        """Push an unsolicited value to subscribers.

        ``previous`` defaults to the value held before this update.
        """
        if previous is _UNSET:
            previous = self.value
        self.value = value
        self._update_count += 1
        for listener in list(self._listeners):
            try:
                listener(self, value, previous)
            except Exception as e:
                logger.error(f"Error in listener for {self.name}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "iid": self.iid,
            "type": self.type,
            "name": self.name,
            "format": self.format,
            "perms": list(self.perms),
            "value": self.value,
        }
        data.update(self.props)
        if self.value is not None:
            value_name = get_characteristic_value_name(self.name, self.value)
            if value_name != str(self.value):
                data["value_name"] = value_name
        return data


class Service:
    """A group of characteristics, e.g. a thermostat."""

    def __init__(self, service_type: str, display_name: str = "", iid: int = 0,
                 iid_source: Optional[Iterable[int]] = None):
        self.type = service_type
        self.display_name = display_name
        self.iid = iid
        self.characteristics: List[Characteristic] = []
        self._iids = iid_source if iid_source is not None else itertools.count(iid + 1)

    @property
    def name(self) -> str:
        return get_service_name(self.type)

    def add_characteristic(self, char_type: str) -> Characteristic:
        characteristic = Characteristic(char_type, next(self._iids))
        self.characteristics.append(characteristic)
        return characteristic

    def get_characteristic(self, char_type: str) -> Characteristic:
        """Return the characteristic of this type, adding it if missing."""
        existing = self.find_characteristic(char_type)
        if existing is not None:
            return existing
        return self.add_characteristic(char_type)

    def find_characteristic(self, char_type: str) -> Optional[Characteristic]:
        for characteristic in self.characteristics:
            if characteristic.type == char_type:
                return characteristic
        return None

    def set_characteristic(self, char_type: str, value: Any) -> 'Service':
        self.get_characteristic(char_type).update_value(value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iid": self.iid,
            "type": self.type,
            "name": self.name,
            "display_name": self.display_name,
            "characteristics": [c.to_dict() for c in self.characteristics],
        }


class PlatformAccessory:
    """An accessory as the host sees it.

    Holds no reference back to the objects that drive it, so it can be used
    as a weak key.
    """

    def __init__(self, display_name: str, uuid: str):
        self.display_name = display_name
        self.uuid = uuid
        self.aid: Optional[int] = None
        self.context: Dict[str, Any] = {}
        self.services: List[Service] = []
        self._iids = itertools.count(1)
        self.add_service(SERVICE_ACCESSORY_INFORMATION, display_name)

    def add_service(self, service_type: str, display_name: str = "") -> Service:
        service = Service(service_type, display_name, next(self._iids), self._iids)
        self.services.append(service)
        if service_type == SERVICE_ACCESSORY_INFORMATION:
            service.get_characteristic(CHAR_NAME).value = display_name
        return service

    def get_service(self, service_type: str) -> Optional[Service]:
        for service in self.services:
            if service.type == service_type:
                return service
        return None

    @property
    def primary_service(self) -> Optional[Service]:
        for service in self.services:
            if service.type != SERVICE_ACCESSORY_INFORMATION:
                return service
        return None

    def find_characteristic(self, char_type: str) -> Optional[Characteristic]:
        """First characteristic of this type, primary services first."""
        for service in sorted(self.services, key=lambda s: s.type == SERVICE_ACCESSORY_INFORMATION):
            characteristic = service.find_characteristic(char_type)
            if characteristic is not None:
                return characteristic
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aid": self.aid,
            "uuid": self.uuid,
            "display_name": self.display_name,
            "context": dict(self.context),
            "services": [s.to_dict() for s in self.services],
        }


class AccessoryHost:
    """Keeps registered accessories and fans out their change events.

    Accessories are addressed by their stable uuid; each gets an ``aid``
    the first time it is registered. Event listeners are asyncio queues
    receiving Server-Sent-Event formatted strings.
    """

    def __init__(self):
        self.accessories: Dict[str, PlatformAccessory] = {}
        self.event_listeners: List[asyncio.Queue] = []
        self.events_sent = 0
        self._next_aid = 2  # aid 1 is the bridge itself
        self._subscriptions: Dict[str, List[tuple]] = {}

    def get_accessory(self, uuid: str) -> Optional[PlatformAccessory]:
        return self.accessories.get(uuid)

    def get_accessory_by_aid(self, aid: int) -> Optional[PlatformAccessory]:
        for accessory in self.accessories.values():
            if accessory.aid == aid:
                return accessory
        return None

    def register_platform_accessories(self, accessories: Iterable[PlatformAccessory]):
        for accessory in accessories:
            if accessory.uuid in self.accessories:
                logger.debug(f"Accessory {accessory.display_name} already registered")
                continue
            if accessory.aid is None:
                accessory.aid = self._next_aid
                self._next_aid += 1
            self.accessories[accessory.uuid] = accessory
            self._subscribe(accessory)
            logger.info(f"Registered accessory {accessory.display_name} (aid {accessory.aid})")

    def unregister_platform_accessories(self, accessories: Iterable[PlatformAccessory]):
        for accessory in accessories:
            if self.accessories.pop(accessory.uuid, None) is None:
                continue
            for characteristic, listener in self._subscriptions.pop(accessory.uuid, []):
                characteristic.unsubscribe(listener)
            logger.info(f"Unregistered accessory {accessory.display_name}")

    def _subscribe(self, accessory: PlatformAccessory):
        subscriptions = []
        aid, uuid, accessory_name = accessory.aid, accessory.uuid, accessory.display_name
        for service in accessory.services:
            service_name = service.name
            for characteristic in service.characteristics:
                if "ev" not in characteristic.perms:
                    continue

                def listener(char, value, previous, service_name=service_name):
                    self.broadcast_event({
                        "type": "characteristic",
                        "aid": aid,
                        "uuid": uuid,
                        "accessory": accessory_name,
                        "service": service_name,
                        "iid": char.iid,
                        "characteristic": char.name,
                        "value": value,
                        "previous": previous,
                        "timestamp": time.time(),
                    })

                characteristic.subscribe(listener)
                subscriptions.append((characteristic, listener))
        self._subscriptions[uuid] = subscriptions

    def broadcast_event(self, event_data: Dict[str, Any]):
        """Send an event to all connected SSE clients."""
        event_message = f"data: {json.dumps(event_data, default=str)}\n\n"
        self.events_sent += 1
        for listener in list(self.event_listeners):
            try:
                listener.put_nowait(event_message)
            except asyncio.QueueFull:
                logger.warning("Dropping slow event listener")
                self.event_listeners.remove(listener)

    def close_listeners(self):
        """Signal end of stream to all SSE clients."""
        for queue in list(self.event_listeners):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)
        self.event_listeners.clear()
