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

"""Constants for the Airstage local HTTP protocol.

Wire values (parameter names, raw codes, operation levels) are exactly what the
indoor unit's WLAN adapter expects. Domain enums are the values the rest of
the package works with; the codec translates between the two.
"""

from enum import Enum, IntEnum

# === TRANSPORT ===
DEFAULT_PORT = 80
DEFAULT_TIMEOUT = 5.0  # seconds, per request

ENDPOINT_GET_PARAM = '/GetParam'
ENDPOINT_SET_PARAM = '/SetParam'

# Operation level carried in the request envelope
SET_LEVEL_GET = '03'
SET_LEVEL_SET = '02'

RESULT_OK = 'OK'

# === SCHEDULER ===
MAX_CONCURRENT_REQUESTS = 2
REQUEST_DELAY = 0.1  # seconds between a completion and the next dispatch

# === POLLING ===
DEFAULT_POLL_INTERVAL = 120  # seconds, 0 disables polling

# === PARAMETERS ===
PARAM_POWER = 'iu_onoff'
PARAM_TARGET_TEMP = 'iu_set_tmp'
PARAM_INDOOR_TEMP = 'iu_indoor_tmp'
PARAM_OUTDOOR_TEMP = 'iu_outdoor_tmp'
PARAM_OPERATION_MODE = 'iu_op_mode'
PARAM_FAN_SPEED = 'iu_fan_spd'
PARAM_ENERGY_SAVING_FAN = 'iu_fan_ctrl'
PARAM_ECONOMY = 'iu_economy'
PARAM_POWERFUL = 'iu_powerful'
PARAM_MINIMUM_HEAT = 'iu_min_heat'
PARAM_AIRFLOW_VERTICAL_DIRECTION = 'iu_af_dir_vrt'
PARAM_AIRFLOW_VERTICAL_SWING = 'iu_af_swg_vrt'
PARAM_MODEL = 'iu_model'
PARAM_OUTDOOR_LOW_NOISE = 'ou_low_noise'


class Toggle(str, Enum):
    OFF = 'off'
    ON = 'on'


class OperationMode(str, Enum):
    AUTO = 'auto'
    COOL = 'cool'
    DRY = 'dry'
    FAN = 'fan'
    HEAT = 'heat'


class FanSpeed(str, Enum):
    AUTO = 'auto'
    QUIET = 'quiet'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class TemperatureScale(str, Enum):
    CELSIUS = 'C'
    FAHRENHEIT = 'F'


class HeatingCoolingState(IntEnum):
    """Derived current heating/cooling state (numbering matches HomeKit)."""
    OFF = 0
    HEAT = 1
    COOL = 2


# Raw wire codes, bijective with the domain enums
TOGGLE_CODES = {
    Toggle.OFF: '0',
    Toggle.ON: '1',
}

OPERATION_MODE_CODES = {
    OperationMode.AUTO: '0',
    OperationMode.COOL: '1',
    OperationMode.DRY: '2',
    OperationMode.FAN: '3',
    OperationMode.HEAT: '4',
}

FAN_SPEED_CODES = {
    FanSpeed.AUTO: '0',
    FanSpeed.QUIET: '2',
    FanSpeed.LOW: '5',
    FanSpeed.MEDIUM: '8',
    FanSpeed.HIGH: '11',
}

# === TEMPERATURES ===
# Valid setpoints accepted by the indoor unit, ascending
VALID_CELSIUS_VALUES = tuple(16.0 + 0.5 * i for i in range(29))          # 16.0 .. 30.0
VALID_FAHRENHEIT_VALUES = tuple(float(60 + i) for i in range(29))        # 60 .. 88

# The unit pairs both scales in order, so the tables form a bijection
FAHRENHEIT_TO_CELSIUS = dict(zip(VALID_FAHRENHEIT_VALUES, VALID_CELSIUS_VALUES))
CELSIUS_TO_FAHRENHEIT = dict(zip(VALID_CELSIUS_VALUES, VALID_FAHRENHEIT_VALUES))

# === AIRFLOW ===
AIRFLOW_VERTICAL_DIRECTION_MIN = 1
AIRFLOW_VERTICAL_DIRECTION_MAX = 4

# Operation modes where the unit is actively cooling
COOLING_MODES = (OperationMode.COOL, OperationMode.DRY)
