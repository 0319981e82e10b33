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

"""Translation between domain values and raw Airstage parameter values.

Everything in here is pure. Two temperature encodings exist on the wire:

- setpoints (``iu_set_tmp``) are Celsius x 10, e.g. ``"220"`` is 22.0 C
- the measured indoor temperature (``iu_indoor_tmp``) is Fahrenheit x 100,
  e.g. ``"7200"`` is 72 F, about 22.2 C

Never decode one with the other's function.
"""

import math
from typing import Dict, Sequence, TypeVar, Union

from .const import (
    AIRFLOW_VERTICAL_DIRECTION_MAX,
    AIRFLOW_VERTICAL_DIRECTION_MIN,
    CELSIUS_TO_FAHRENHEIT,
    FAHRENHEIT_TO_CELSIUS,
    FAN_SPEED_CODES,
    OPERATION_MODE_CODES,
    TOGGLE_CODES,
    VALID_CELSIUS_VALUES,
    VALID_FAHRENHEIT_VALUES,
    FanSpeed,
    OperationMode,
    TemperatureScale,
    Toggle,
)
from .exceptions import CodecError

E = TypeVar('E')

Number = Union[int, float]


def _invert(table: Dict[E, str]) -> Dict[str, E]:
    return {code: value for value, code in table.items()}


_TOGGLE_BY_CODE = _invert(TOGGLE_CODES)
_OPERATION_MODE_BY_CODE = _invert(OPERATION_MODE_CODES)
_FAN_SPEED_BY_CODE = _invert(FAN_SPEED_CODES)


def _lookup_code(table: Dict[str, E], raw, what: str) -> E:
    key = str(raw).strip() if raw is not None else None
    try:
        return table[key]
    except KeyError:
        raise CodecError(f"Unknown {what} value: {raw!r}") from None


def parse_number(raw) -> int:
    """Parse a raw parameter value into an integer.

    The unit reports numbers as decimal strings. A fractional part is
    truncated, anything else that is not a number raises CodecError.
    """
    if isinstance(raw, bool) or raw is None:
        raise CodecError(f"Not a number: {raw!r}")
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            raise CodecError(f"Not a number: {raw!r}")
        return int(raw)

    text = str(raw).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        raise CodecError(f"Not a number: {raw!r}") from None
    if not math.isfinite(value):
        raise CodecError(f"Not a number: {raw!r}")
    return int(value)


# === ENUMERATED VALUES ===

def toggle_to_parameter_value(toggle: Toggle) -> str:
    return TOGGLE_CODES[Toggle(toggle)]


def parameter_value_to_toggle(raw) -> Toggle:
    return _lookup_code(_TOGGLE_BY_CODE, raw, 'toggle')


def operation_mode_to_parameter_value(mode: OperationMode) -> str:
    return OPERATION_MODE_CODES[OperationMode(mode)]


def parameter_value_to_operation_mode(raw) -> OperationMode:
    return _lookup_code(_OPERATION_MODE_BY_CODE, raw, 'operation mode')


def fan_speed_to_parameter_value(speed: FanSpeed) -> str:
    return FAN_SPEED_CODES[FanSpeed(speed)]


def parameter_value_to_fan_speed(raw) -> FanSpeed:
    return _lookup_code(_FAN_SPEED_BY_CODE, raw, 'fan speed')


# === TEMPERATURES ===

def encode_temperature(celsius: Number) -> str:
    """Encode a Celsius setpoint as tenths of a degree (22.0 -> "220")."""
    # Half-up rounding, 22.05 -> "221"
    return str(math.floor(celsius * 10 + 0.5))


def decode_temperature(raw) -> float:
    """Decode a setpoint parameter value into Celsius ("220" -> 22.0)."""
    return parse_number(raw) / 10


def decode_indoor_temperature(raw) -> float:
    """Decode the measured indoor temperature into Celsius ("7200" -> 22.22)."""
    fahrenheit = parse_number(raw) / 100
    return (fahrenheit - 32) * 5 / 9


def closest_value(target: Number, candidates: Sequence[float]) -> float:
    """Return the candidate nearest to target.

    On an exact tie the higher candidate wins, whatever the order of
    ``candidates``.
    """
    if not candidates:
        raise ValueError("No candidate values")
    if isinstance(target, bool) or not isinstance(target, (int, float)) or not math.isfinite(target):
        raise CodecError(f"Not a number: {target!r}")

    best = None
    best_distance = None
    for candidate in candidates:
        distance = abs(candidate - target)
        if (best is None
                or distance < best_distance
                or (distance == best_distance and candidate > best)):
            best = candidate
            best_distance = distance
    return best


def closest_valid_temperature(temperature: Number, scale: TemperatureScale) -> float:
    """Snap a temperature to the nearest setpoint the unit accepts in that scale."""
    if TemperatureScale(scale) == TemperatureScale.FAHRENHEIT:
        return closest_value(temperature, VALID_FAHRENHEIT_VALUES)
    return closest_value(temperature, VALID_CELSIUS_VALUES)


def fahrenheit_to_celsius(fahrenheit: Number) -> float:
    """Convert through the unit's correspondence table, after snapping."""
    return FAHRENHEIT_TO_CELSIUS[closest_valid_temperature(fahrenheit, TemperatureScale.FAHRENHEIT)]


def celsius_to_fahrenheit(celsius: Number) -> float:
    """Convert through the unit's correspondence table, after snapping."""
    return CELSIUS_TO_FAHRENHEIT[closest_valid_temperature(celsius, TemperatureScale.CELSIUS)]


def convert_temperature(celsius: Number, scale: TemperatureScale) -> float:
    """Express a Celsius reading in the requested scale."""
    if TemperatureScale(scale) == TemperatureScale.FAHRENHEIT:
        return celsius_to_fahrenheit(celsius)
    return celsius


# === AIRFLOW ===

def clamp_airflow_vertical_direction(value: Number) -> int:
    """Clamp a vertical airflow direction into the supported range."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise CodecError(f"Not a number: {value!r}")
    return int(max(AIRFLOW_VERTICAL_DIRECTION_MIN, min(AIRFLOW_VERTICAL_DIRECTION_MAX, value)))
