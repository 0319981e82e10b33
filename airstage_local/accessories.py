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

"""Accessories binding indoor unit properties to HomeKit characteristics."""

import logging
from typing import Any, Awaitable, Callable, Dict, Tuple

from . import codec
from .const import COOLING_MODES, FanSpeed, OperationMode, TemperatureScale, Toggle
from .exceptions import is_unreachable_error
from .homekit import (
    CHAR_ACTIVE,
    CHAR_CURRENT_FAN_STATE,
    CHAR_CURRENT_HEATING_COOLING_STATE,
    CHAR_CURRENT_TEMPERATURE,
    CHAR_MANUFACTURER,
    CHAR_MODEL,
    CHAR_NAME,
    CHAR_ON,
    CHAR_ROTATION_SPEED,
    CHAR_SERIAL_NUMBER,
    CHAR_STATUS_FAULT,
    CHAR_SWING_MODE,
    CHAR_TARGET_FAN_STATE,
    CHAR_TARGET_HEATING_COOLING_STATE,
    CHAR_TARGET_TEMPERATURE,
    CHAR_TEMPERATURE_DISPLAY_UNITS,
    SERVICE_ACCESSORY_INFORMATION,
    SERVICE_FANV2,
    SERVICE_SWITCH,
    SERVICE_THERMOSTAT,
    Active,
    CurrentFanState,
    PlatformAccessory,
    StatusFault,
    SwingMode,
    TargetFanState,
    TargetHeatingCoolingState,
    TemperatureDisplayUnits,
)

logger = logging.getLogger('airstage-local')

MANUFACTURER = 'Fujitsu General'

# RotationSpeed percentage per manual fan speed; auto reads as 0
ROTATION_SPEEDS = {
    FanSpeed.QUIET: 25,
    FanSpeed.LOW: 50,
    FanSpeed.MEDIUM: 75,
    FanSpeed.HIGH: 100,
}
_FAN_SPEED_BY_ROTATION = {speed: fan_speed for fan_speed, speed in ROTATION_SPEEDS.items()}

_OPERATION_MODE_BY_TARGET_STATE = {
    TargetHeatingCoolingState.HEAT: OperationMode.HEAT,
    TargetHeatingCoolingState.COOL: OperationMode.COOL,
    TargetHeatingCoolingState.AUTO: OperationMode.AUTO,
}


class AirstageAccessory:
    """Base class: one HomeKit accessory for one feature of an indoor unit.

    Handlers turn device errors into the StatusFault characteristic of the
    accessory information service: unreachable devices raise a general
    fault, anything else (and every successful read) clears it.
    """

    suffix = ''
    service_type = ''
    characteristic_types: Tuple[str, ...] = ()

    def __init__(self, platform, accessory: PlatformAccessory, device_id: str):
        self.platform = platform
        self.client = platform.client
        self.accessory = accessory
        self.device_id = device_id

        info = accessory.get_service(SERVICE_ACCESSORY_INFORMATION)
        info.get_characteristic(CHAR_MANUFACTURER).value = MANUFACTURER
        info.get_characteristic(CHAR_MODEL).value = accessory.context.get('model') or 'Airstage'
        info.get_characteristic(CHAR_SERIAL_NUMBER).value = device_id
        self.status_fault = info.get_characteristic(CHAR_STATUS_FAULT)
        if self.status_fault.value is None:
            self.status_fault.value = int(StatusFault.NO_FAULT)

        self.service = accessory.get_service(self.service_type)
        if self.service is None:
            self.service = accessory.add_service(self.service_type, accessory.display_name)
        self.configure()

    def configure(self):
        raise NotImplementedError

    @property
    def name(self) -> str:
        return self.accessory.display_name

    async def refresh(self, only_notify_on_change: bool = False) -> int:
        return await self.platform.synchronizer.refresh(
            self.accessory, self.characteristic_types, only_notify_on_change)

    # === FAULT HANDLING ===

    def _set_fault(self, fault: StatusFault):
        if self.status_fault.value != int(fault):
            self.status_fault.update_value(int(fault))

    def _handle_error(self, method_name: str, err: Exception):
        if is_unreachable_error(err):
            self._set_fault(StatusFault.GENERAL_FAULT)
            logger.warning(f"{self.name}: device unreachable during {method_name}: {err}")
        else:
            self._set_fault(StatusFault.NO_FAULT)
            logger.error(f"{self.name}: {method_name} failed: {err}")

    def _getter(self, method_name: str, func: Callable[[], Awaitable[Any]]):
        async def handler():
            logger.debug(f"{self.name}: {method_name}")
            try:
                value = await func()
            except Exception as e:
                self._handle_error(method_name, e)
                raise
            self._set_fault(StatusFault.NO_FAULT)
            return value
        return handler

    def _setter(self, method_name: str, func: Callable[[Any], Awaitable[Any]]):
        async def handler(value):
            logger.debug(f"{self.name}: {method_name}({value})")
            try:
                await func(value)
            except Exception as e:
                self._handle_error(method_name, e)
                raise
        return handler

    def _bind(self, char_type: str, getter=None, setter=None):
        characteristic = self.service.get_characteristic(char_type)
        name = characteristic.name
        if getter is not None:
            characteristic.on_get(self._getter(f"get{name}", getter))
        if setter is not None:
            characteristic.on_set(self._setter(f"set{name}", setter))
        return characteristic


class ThermostatAccessory(AirstageAccessory):
    """Power, operation mode and setpoint of the indoor unit."""

    suffix = 'thermostat'
    service_type = SERVICE_THERMOSTAT
    characteristic_types = (
        CHAR_CURRENT_HEATING_COOLING_STATE,
        CHAR_TARGET_HEATING_COOLING_STATE,
        CHAR_CURRENT_TEMPERATURE,
        CHAR_TARGET_TEMPERATURE,
        CHAR_TEMPERATURE_DISPLAY_UNITS,
    )

    def configure(self):
        self.service.get_characteristic(CHAR_NAME).value = f"{self.client.get_name(self.device_id)} Thermostat"
        self._bind(CHAR_CURRENT_HEATING_COOLING_STATE, self.get_current_heating_cooling_state)
        self._bind(CHAR_TARGET_HEATING_COOLING_STATE,
                   self.get_target_heating_cooling_state, self.set_target_heating_cooling_state)
        self._bind(CHAR_CURRENT_TEMPERATURE, self.get_current_temperature)
        self.target_temperature = self._bind(
            CHAR_TARGET_TEMPERATURE, self.get_target_temperature, self.set_target_temperature)
        self.target_temperature.set_props(minValue=10, maxValue=30, minStep=0.5)
        self._bind(CHAR_TEMPERATURE_DISPLAY_UNITS,
                   self.get_temperature_display_units, self.set_temperature_display_units)

    async def get_current_heating_cooling_state(self) -> int:
        return int(await self.client.get_current_heating_cooling_state(self.device_id))

    async def get_target_heating_cooling_state(self) -> int:
        if await self.client.get_power(self.device_id) == Toggle.OFF:
            return int(TargetHeatingCoolingState.OFF)

        mode = await self.client.get_operation_mode(self.device_id)
        if mode in COOLING_MODES:
            return int(TargetHeatingCoolingState.COOL)
        if mode == OperationMode.HEAT:
            return int(TargetHeatingCoolingState.HEAT)
        if mode == OperationMode.AUTO:
            return int(TargetHeatingCoolingState.AUTO)
        return int(TargetHeatingCoolingState.OFF)

    async def set_target_heating_cooling_state(self, value: int):
        target = TargetHeatingCoolingState(value)
        power = await self.client.get_power(self.device_id)

        if target == TargetHeatingCoolingState.OFF:
            if power == Toggle.ON:
                await self.client.set_power(self.device_id, Toggle.OFF)
        else:
            if power == Toggle.OFF:
                await self.client.set_power(self.device_id, Toggle.ON)
            await self.client.set_operation_mode(self.device_id, _OPERATION_MODE_BY_TARGET_STATE[target])

        self.platform.request_refresh(self.device_id)

    async def get_current_temperature(self) -> float:
        return await self.client.get_indoor_temperature(self.device_id, TemperatureScale.CELSIUS)

    async def get_target_temperature(self) -> float:
        return await self.client.get_target_temperature(self.device_id, TemperatureScale.CELSIUS)

    async def set_target_temperature(self, value: float):
        applied = await self.client.set_target_temperature(self.device_id, value, TemperatureScale.CELSIUS)
        self.target_temperature.update_value(applied)

    async def get_temperature_display_units(self) -> int:
        scale = self.client.get_temperature_scale(self.device_id)
        if scale == TemperatureScale.FAHRENHEIT:
            return int(TemperatureDisplayUnits.FAHRENHEIT)
        return int(TemperatureDisplayUnits.CELSIUS)

    async def set_temperature_display_units(self, value: int):
        if TemperatureDisplayUnits(value) == TemperatureDisplayUnits.FAHRENHEIT:
            self.client.set_temperature_scale(TemperatureScale.FAHRENHEIT)
        else:
            self.client.set_temperature_scale(TemperatureScale.CELSIUS)


class FanAccessory(AirstageAccessory):
    """Fan speed and vertical swing."""

    suffix = 'fan'
    service_type = SERVICE_FANV2
    characteristic_types = (
        CHAR_ACTIVE,
        CHAR_CURRENT_FAN_STATE,
        CHAR_TARGET_FAN_STATE,
        CHAR_ROTATION_SPEED,
        CHAR_SWING_MODE,
    )

    def configure(self):
        self.service.get_characteristic(CHAR_NAME).value = f"{self.client.get_name(self.device_id)} Fan"
        self._bind(CHAR_ACTIVE, self.get_active, self.set_active)
        self._bind(CHAR_CURRENT_FAN_STATE, self.get_current_fan_state)
        self._bind(CHAR_TARGET_FAN_STATE, self.get_target_fan_state, self.set_target_fan_state)
        self._bind(CHAR_ROTATION_SPEED, self.get_rotation_speed, self.set_rotation_speed)
        self._bind(CHAR_SWING_MODE, self.get_swing_mode, self.set_swing_mode)

    async def get_active(self) -> int:
        if await self.client.get_power(self.device_id) == Toggle.ON:
            return int(Active.ACTIVE)
        return int(Active.INACTIVE)

    async def set_active(self, value: int):
        toggle = Toggle.ON if Active(value) == Active.ACTIVE else Toggle.OFF
        if await self.client.get_power(self.device_id) != toggle:
            await self.client.set_power(self.device_id, toggle)
            self.platform.request_refresh(self.device_id)

    async def get_current_fan_state(self) -> int:
        if await self.client.get_power(self.device_id) == Toggle.OFF:
            return int(CurrentFanState.INACTIVE)
        return int(CurrentFanState.BLOWING_AIR)

    async def get_target_fan_state(self) -> int:
        if await self.client.get_fan_speed(self.device_id) == FanSpeed.AUTO:
            return int(TargetFanState.AUTO)
        return int(TargetFanState.MANUAL)

    async def set_target_fan_state(self, value: int):
        if TargetFanState(value) == TargetFanState.AUTO:
            await self.client.set_fan_speed(self.device_id, FanSpeed.AUTO)
        elif await self.client.get_fan_speed(self.device_id) == FanSpeed.AUTO:
            await self.client.set_fan_speed(self.device_id, FanSpeed.MEDIUM)
        self.platform.request_refresh(self.device_id, [self.suffix])

    async def get_rotation_speed(self) -> int:
        return ROTATION_SPEEDS.get(await self.client.get_fan_speed(self.device_id), 0)

    async def set_rotation_speed(self, value: float):
        if value <= 0:
            speed = FanSpeed.AUTO
        else:
            speed = _FAN_SPEED_BY_ROTATION[int(codec.closest_value(value, sorted(_FAN_SPEED_BY_ROTATION)))]
        await self.client.set_fan_speed(self.device_id, speed)
        self.platform.request_refresh(self.device_id, [self.suffix])

    async def get_swing_mode(self) -> int:
        if await self.client.get_airflow_vertical_swing(self.device_id) == Toggle.ON:
            return int(SwingMode.SWING_ENABLED)
        return int(SwingMode.SWING_DISABLED)

    async def set_swing_mode(self, value: int):
        toggle = Toggle.ON if SwingMode(value) == SwingMode.SWING_ENABLED else Toggle.OFF
        await self.client.set_airflow_vertical_swing(self.device_id, toggle)


class FeatureSwitchAccessory(AirstageAccessory):
    """An On/Off switch for one of the unit's toggle features."""

    service_type = SERVICE_SWITCH
    characteristic_types = (CHAR_ON,)

    def __init__(self, platform, accessory: PlatformAccessory, device_id: str, feature: str):
        self.suffix = feature
        self.label, getter_name, setter_name = SWITCH_FEATURES[feature]
        self._get_toggle = getattr(platform.client, getter_name)
        self._set_toggle = getattr(platform.client, setter_name)
        super().__init__(platform, accessory, device_id)

    def configure(self):
        self.service.get_characteristic(CHAR_NAME).value = f"{self.client.get_name(self.device_id)} {self.label}"
        self._bind(CHAR_ON, self.get_on, self.set_on)

    async def get_on(self) -> bool:
        return await self._get_toggle(self.device_id) == Toggle.ON

    async def set_on(self, value: bool):
        await self._set_toggle(self.device_id, Toggle.ON if value else Toggle.OFF)
        self.platform.request_refresh(self.device_id)


# suffix -> (label, client getter, client setter)
SWITCH_FEATURES: Dict[str, Tuple[str, str, str]] = {
    'powerful': ('Powerful', 'get_powerful', 'set_powerful'),
    'economy': ('Economy', 'get_economy', 'set_economy'),
    'energy-saving-fan': ('Energy Saving Fan', 'get_energy_saving_fan', 'set_energy_saving_fan'),
    'minimum-heat-mode': ('Minimum Heat Mode', 'get_minimum_heat', 'set_minimum_heat'),
}
