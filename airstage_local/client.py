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

"""Device client - one query or command per indoor unit property."""

import logging
from typing import Any, Callable, Dict, List, Optional

from . import codec
from .const import (
    COOLING_MODES,
    ENDPOINT_GET_PARAM,
    ENDPOINT_SET_PARAM,
    PARAM_AIRFLOW_VERTICAL_DIRECTION,
    PARAM_AIRFLOW_VERTICAL_SWING,
    PARAM_ECONOMY,
    PARAM_ENERGY_SAVING_FAN,
    PARAM_FAN_SPEED,
    PARAM_INDOOR_TEMP,
    PARAM_MINIMUM_HEAT,
    PARAM_MODEL,
    PARAM_OPERATION_MODE,
    PARAM_POWER,
    PARAM_POWERFUL,
    PARAM_TARGET_TEMP,
    FanSpeed,
    HeatingCoolingState,
    OperationMode,
    TemperatureScale,
    Toggle,
)
from .database import PreferenceStore
from .exceptions import ProtocolError
from .models import GetParamRequest, SetParamRequest, to_payload
from .registry import DeviceRecord, DeviceRegistry
from .scheduler import RequestScheduler
from .transport import LocalTransport

logger = logging.getLogger('airstage-local')


class LocalClient:
    """Reads and writes indoor unit properties over the local HTTP API.

    Every call resolves the device in the registry, builds a GetParam or
    SetParam envelope, runs it through that device's scheduler and decodes
    the result. Each device gets one scheduler, shared by polling and
    commands alike.
    """

    def __init__(self, registry: DeviceRegistry, transport: Optional[LocalTransport] = None,
                 preferences: Optional[PreferenceStore] = None,
                 scheduler_factory: Callable[[], RequestScheduler] = RequestScheduler):
        self.registry = registry
        self.transport = transport or LocalTransport()
        self.preferences = preferences
        self._scheduler_factory = scheduler_factory
        self._schedulers: Dict[str, RequestScheduler] = {}
        self._temperature_scales: Dict[str, TemperatureScale] = {}

    def scheduler_for(self, device_id: str) -> RequestScheduler:
        device = self.registry.get(device_id)
        scheduler = self._schedulers.get(device.device_id)
        if scheduler is None:
            scheduler = self._scheduler_factory()
            self._schedulers[device.device_id] = scheduler
        return scheduler

    @property
    def schedulers(self) -> Dict[str, RequestScheduler]:
        return dict(self._schedulers)

    async def close(self):
        for scheduler in self._schedulers.values():
            await scheduler.shutdown()

    # === WIRE HELPERS ===

    async def _request(self, device: DeviceRecord, endpoint: str, payload: Dict[str, Any]):
        scheduler = self.scheduler_for(device.device_id)
        return await scheduler.enqueue(lambda: self.transport.send(device, endpoint, payload))

    async def get_parameters(self, device_id: str, parameters: List[str]) -> Dict[str, Any]:
        """Read several raw parameters with a single GetParam request."""
        device = self.registry.get(device_id)
        request = GetParamRequest.for_device(device, parameters)
        return await self._request(device, ENDPOINT_GET_PARAM, to_payload(request))

    async def set_parameters(self, device_id: str, values: Dict[str, str]):
        device = self.registry.get(device_id)
        request = SetParamRequest.for_device(device, values)
        return await self._request(device, ENDPOINT_SET_PARAM, to_payload(request))

    async def get_parameter(self, device_id: str, name: str) -> Optional[str]:
        """Return the raw value of one parameter, or None if the unit omits it."""
        values = await self.get_parameters(device_id, [name])
        value = values.get(name)
        return None if value is None else str(value)

    async def set_parameter(self, device_id: str, name: str, value: str):
        await self.set_parameters(device_id, {name: value})

    async def _read(self, device_id: str, name: str) -> str:
        value = await self.get_parameter(device_id, name)
        if value is None:
            raise ProtocolError(f"Parameter {name} missing from response of device {device_id}")
        return value

    # === DEVICES ===

    def get_devices(self) -> List[DeviceRecord]:
        return self.registry.all()

    def get_name(self, device_id: str) -> str:
        return self.registry.get(device_id).name

    async def get_model(self, device_id: str) -> Optional[str]:
        return await self.get_parameter(device_id, PARAM_MODEL)

    # === POWER / MODE ===

    async def get_power(self, device_id: str) -> Toggle:
        return codec.parameter_value_to_toggle(await self._read(device_id, PARAM_POWER))

    async def set_power(self, device_id: str, toggle: Toggle):
        toggle = Toggle(toggle)
        logger.info(f"{self.get_name(device_id)}: power {toggle.value}")
        await self.set_parameter(device_id, PARAM_POWER, codec.toggle_to_parameter_value(toggle))

    async def get_operation_mode(self, device_id: str) -> OperationMode:
        return codec.parameter_value_to_operation_mode(await self._read(device_id, PARAM_OPERATION_MODE))

    async def set_operation_mode(self, device_id: str, mode: OperationMode):
        mode = OperationMode(mode)
        logger.info(f"{self.get_name(device_id)}: operation mode {mode.value}")
        await self.set_parameter(device_id, PARAM_OPERATION_MODE, codec.operation_mode_to_parameter_value(mode))

    # === TEMPERATURES ===

    async def get_indoor_temperature(self, device_id: str,
                                     scale: TemperatureScale = TemperatureScale.CELSIUS) -> float:
        celsius = codec.decode_indoor_temperature(await self._read(device_id, PARAM_INDOOR_TEMP))
        return codec.convert_temperature(celsius, scale)

    async def get_target_temperature(self, device_id: str,
                                     scale: TemperatureScale = TemperatureScale.CELSIUS) -> float:
        celsius = codec.decode_temperature(await self._read(device_id, PARAM_TARGET_TEMP))
        return codec.convert_temperature(celsius, scale)

    async def set_target_temperature(self, device_id: str, temperature: float,
                                     scale: TemperatureScale = TemperatureScale.CELSIUS) -> float:
        """Write a setpoint and return the value actually applied, in ``scale``."""
        scale = TemperatureScale(scale)
        if scale == TemperatureScale.FAHRENHEIT:
            applied = codec.closest_valid_temperature(temperature, scale)
            celsius = codec.fahrenheit_to_celsius(applied)
        else:
            celsius = codec.closest_valid_temperature(temperature, scale)
            applied = celsius

        logger.info(f"{self.get_name(device_id)}: target temperature {applied}{scale.value}"
                    + (f" (requested {temperature})" if applied != temperature else ""))
        await self.set_parameter(device_id, PARAM_TARGET_TEMP, codec.encode_temperature(celsius))
        return applied

    async def get_temperature_delta(self, device_id: str,
                                    scale: TemperatureScale = TemperatureScale.CELSIUS) -> float:
        """Indoor minus target temperature. Positive means warmer than wanted."""
        indoor = await self.get_indoor_temperature(device_id, scale)
        target = await self.get_target_temperature(device_id, scale)
        return indoor - target

    async def get_current_heating_cooling_state(self, device_id: str) -> HeatingCoolingState:
        """Work out whether the unit is currently heating, cooling or idle.

        Auto mode has no fixed direction, so it is inferred from the
        temperature delta: warmer than the setpoint means cooling.
        """
        if await self.get_power(device_id) == Toggle.OFF:
            return HeatingCoolingState.OFF

        mode = await self.get_operation_mode(device_id)
        if mode in COOLING_MODES:
            return HeatingCoolingState.COOL
        if mode == OperationMode.HEAT:
            return HeatingCoolingState.HEAT
        if mode == OperationMode.FAN:
            return HeatingCoolingState.OFF

        delta = await self.get_temperature_delta(device_id)
        if delta > 0:
            return HeatingCoolingState.COOL
        if delta < 0:
            return HeatingCoolingState.HEAT
        return HeatingCoolingState.OFF

    # === FAN / AIRFLOW ===

    async def get_fan_speed(self, device_id: str) -> FanSpeed:
        return codec.parameter_value_to_fan_speed(await self._read(device_id, PARAM_FAN_SPEED))

    async def set_fan_speed(self, device_id: str, speed: FanSpeed):
        speed = FanSpeed(speed)
        logger.info(f"{self.get_name(device_id)}: fan speed {speed.value}")
        await self.set_parameter(device_id, PARAM_FAN_SPEED, codec.fan_speed_to_parameter_value(speed))

    async def get_airflow_vertical_direction(self, device_id: str) -> int:
        return codec.parse_number(await self._read(device_id, PARAM_AIRFLOW_VERTICAL_DIRECTION))

    async def set_airflow_vertical_direction(self, device_id: str, direction: int) -> int:
        applied = codec.clamp_airflow_vertical_direction(direction)
        logger.info(f"{self.get_name(device_id)}: vertical airflow direction {applied}")
        await self.set_parameter(device_id, PARAM_AIRFLOW_VERTICAL_DIRECTION, str(applied))
        return applied

    async def get_airflow_vertical_swing(self, device_id: str) -> Toggle:
        return await self._get_toggle(device_id, PARAM_AIRFLOW_VERTICAL_SWING)

    async def set_airflow_vertical_swing(self, device_id: str, toggle: Toggle):
        await self._set_toggle(device_id, PARAM_AIRFLOW_VERTICAL_SWING, toggle, 'vertical swing')

    # === FEATURE TOGGLES ===

    async def _get_toggle(self, device_id: str, parameter: str) -> Toggle:
        return codec.parameter_value_to_toggle(await self._read(device_id, parameter))

    async def _set_toggle(self, device_id: str, parameter: str, toggle: Toggle, label: str):
        toggle = Toggle(toggle)
        logger.info(f"{self.get_name(device_id)}: {label} {toggle.value}")
        await self.set_parameter(device_id, parameter, codec.toggle_to_parameter_value(toggle))

    async def get_powerful(self, device_id: str) -> Toggle:
        return await self._get_toggle(device_id, PARAM_POWERFUL)

    async def set_powerful(self, device_id: str, toggle: Toggle):
        await self._set_toggle(device_id, PARAM_POWERFUL, toggle, 'powerful')

    async def get_economy(self, device_id: str) -> Toggle:
        return await self._get_toggle(device_id, PARAM_ECONOMY)

    async def set_economy(self, device_id: str, toggle: Toggle):
        await self._set_toggle(device_id, PARAM_ECONOMY, toggle, 'economy')

    async def get_energy_saving_fan(self, device_id: str) -> Toggle:
        return await self._get_toggle(device_id, PARAM_ENERGY_SAVING_FAN)

    async def set_energy_saving_fan(self, device_id: str, toggle: Toggle):
        await self._set_toggle(device_id, PARAM_ENERGY_SAVING_FAN, toggle, 'energy saving fan')

    async def get_minimum_heat(self, device_id: str) -> Toggle:
        return await self._get_toggle(device_id, PARAM_MINIMUM_HEAT)

    async def set_minimum_heat(self, device_id: str, toggle: Toggle):
        await self._set_toggle(device_id, PARAM_MINIMUM_HEAT, toggle, 'minimum heat')

    # === DISPLAY UNITS ===

    def get_temperature_scale(self, device_id: Optional[str] = None) -> TemperatureScale:
        """Preferred display scale; defaults to the first registered device's."""
        if device_id is None:
            devices = self.registry.all()
            if not devices:
                return TemperatureScale.CELSIUS
            device_id = devices[0].device_id
        device_id = self.registry.get(device_id).device_id

        if self.preferences is not None:
            return self.preferences.get_temperature_scale(device_id)
        return self._temperature_scales.get(device_id, TemperatureScale.CELSIUS)

    def set_temperature_scale(self, scale: TemperatureScale, device_id: Optional[str] = None):
        """Store the display scale for one device, or for all of them."""
        scale = TemperatureScale(scale)
        if device_id is None:
            device_ids = [device.device_id for device in self.registry.all()]
        else:
            device_ids = [self.registry.get(device_id).device_id]

        for dev_id in device_ids:
            if self.preferences is not None:
                self.preferences.set_temperature_scale(dev_id, scale)
            else:
                self._temperature_scales[dev_id] = scale
        logger.info(f"Temperature display units set to {scale.value} for {len(device_ids)} device(s)")
