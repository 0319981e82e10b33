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

"""Pydantic models for the GetParam/SetParam envelopes."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .const import RESULT_OK, SET_LEVEL_GET, SET_LEVEL_SET
from .registry import DeviceRecord


class _RequestEnvelope(BaseModel):
    model_config = ConfigDict(extra='forbid')

    device_id: str
    device_sub_id: int = 0
    req_id: str = ''
    modified_by: str = ''
    set_level: str


class GetParamRequest(_RequestEnvelope):
    """Read one or more parameters."""

    set_level: str = SET_LEVEL_GET
    parameters: List[str] = Field(serialization_alias='list')

    @classmethod
    def for_device(cls, device: DeviceRecord, parameters: List[str]) -> 'GetParamRequest':
        return cls(device_id=device.device_id, device_sub_id=device.device_sub_id,
                   parameters=list(parameters))


class SetParamRequest(_RequestEnvelope):
    """Write parameter values."""

    set_level: str = SET_LEVEL_SET
    value: Dict[str, str]

    @field_validator('value', mode='before')
    @classmethod
    def _stringify_values(cls, value: Any) -> Any:
        """The unit only accepts string values."""
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @classmethod
    def for_device(cls, device: DeviceRecord, values: Dict[str, str]) -> 'SetParamRequest':
        return cls(device_id=device.device_id, device_sub_id=device.device_sub_id,
                   value=dict(values))


class ParamResponse(BaseModel):
    """Response to either request.

    Reads carry the parameter map in ``value``; writes usually carry nothing.
    """

    model_config = ConfigDict(extra='allow')

    result: Optional[str] = None
    error: Optional[Any] = None
    value: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.result == RESULT_OK


def to_payload(request: _RequestEnvelope) -> Dict[str, Any]:
    """Serialize a request the way the unit expects it on the wire."""
    return request.model_dump(by_alias=True)
