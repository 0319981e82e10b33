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

"""FastAPI route handlers for Airstage Local."""

import asyncio
import json
import logging
import os
import time
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .__version__ import __version__
from .const import (
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
    OperationMode,
    TemperatureScale,
    Toggle,
)
from . import codec
from .exceptions import (
    AirstageError,
    CodecError,
    DeviceNotFoundError,
    ProtocolError,
    TransportError,
)
from .homekit import get_characteristic_type

logger = logging.getLogger(__name__)

# Security
security = HTTPBearer(auto_error=False)

# Multiple keys can be specified, space-separated
API_KEYS_RAW = os.environ.get('AIRSTAGE_API_KEYS', '').strip()
API_KEYS = set(key.strip() for key in API_KEYS_RAW.split() if key.strip()) if API_KEYS_RAW else set()

KEEPALIVE_INTERVAL = 90  # seconds
EVENT_QUEUE_SIZE = 100  # events buffered per SSE client before it is dropped


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If API keys are configured (AIRSTAGE_API_KEYS environment variable), checks Bearer token.
    If no API keys are configured, authentication is disabled.

    Raises:
        HTTPException 401 if authentication fails
    """
    if not API_KEYS:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def error_to_http(e: Exception) -> HTTPException:
    """Map a device error to an HTTP error with a readable detail."""
    if isinstance(e, DeviceNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, TransportError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, (ProtocolError, CodecError)):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


class CharacteristicWrite(BaseModel):
    value: Any


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Airstage Local",
        description="Local REST API for Fujitsu Airstage air conditioners",
        version=__version__
    )

    if API_KEYS:
        logger.info(f"API authentication enabled ({len(API_KEYS)} key(s) configured)")
    else:
        logger.info("API authentication disabled (no AIRSTAGE_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_platform):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_platform: Callable that returns the current AirstagePlatform instance
    """

    def require_platform():
        platform = get_platform()
        if not platform:
            raise HTTPException(status_code=503, detail="Platform not initialized")
        return platform

    @app.get("/", tags=["Info"])
    async def root(api_key: Optional[str] = Depends(get_api_key)):
        """API information and navigation."""
        return {
            "service": "Airstage Local",
            "description": "Local REST API for Fujitsu Airstage air conditioners",
            "version": __version__,
            "documentation": "/docs",
            "endpoints": {
                "status": "/status",
                "devices": "/devices",
                "accessories": "/accessories",
                "events": "/events",
                "refresh": "/refresh",
            }
        }

    @app.get("/status", tags=["Status"])
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        """Get overall system status."""
        platform = require_platform()
        result = {
            "status": "running" if not platform.is_shutting_down else "shutting_down",
            "version": __version__,
            "active_listeners": len(platform.host.event_listeners),
            "events_sent": platform.host.events_sent,
        }
        result.update(platform.get_status())
        return result

    @app.get("/devices", tags=["Devices"])
    async def get_devices(api_key: Optional[str] = Depends(get_api_key)):
        """List registered devices."""
        platform = require_platform()
        return {
            "devices": [
                dict(record.to_dict(),
                     temperature_scale=platform.client.get_temperature_scale(record.device_id).value,
                     accessories=[a.accessory.aid for a in platform.get_device_accessories(record.device_id)])
                for record in platform.client.get_devices()
            ],
            "excluded": platform.excluded_devices,
        }

    @app.get("/devices/{device_id}", tags=["Devices"])
    async def get_device(device_id: str, api_key: Optional[str] = Depends(get_api_key)):
        """Read the current state of a device (one GetParam request)."""
        platform = require_platform()
        client = platform.client
        try:
            record = client.registry.get(device_id)
            raw = await client.get_parameters(record.device_id, [
                PARAM_POWER, PARAM_OPERATION_MODE, PARAM_TARGET_TEMP, PARAM_INDOOR_TEMP,
                PARAM_FAN_SPEED, PARAM_AIRFLOW_VERTICAL_DIRECTION, PARAM_AIRFLOW_VERTICAL_SWING,
                PARAM_POWERFUL, PARAM_ECONOMY, PARAM_ENERGY_SAVING_FAN, PARAM_MINIMUM_HEAT, PARAM_MODEL,
            ])
        except AirstageError as e:
            raise error_to_http(e)

        def decode(param, func):
            value = raw.get(param)
            if value is None:
                return None
            try:
                return func(value)
            except CodecError:
                logger.debug(f"{record.name}: cannot decode {param}={value!r}")
                return None

        def toggle(value):
            return codec.parameter_value_to_toggle(value).value

        scale = client.get_temperature_scale(record.device_id)
        target_c = decode(PARAM_TARGET_TEMP, codec.decode_temperature)
        indoor_c = decode(PARAM_INDOOR_TEMP, codec.decode_indoor_temperature)

        return {
            "device": record.to_dict(),
            "state": {
                "power": decode(PARAM_POWER, toggle),
                "mode": decode(PARAM_OPERATION_MODE, lambda v: codec.parameter_value_to_operation_mode(v).value),
                "target_temp_c": target_c,
                "cur_temp_c": round(indoor_c, 2) if indoor_c is not None else None,
                "temperature_scale": scale.value,
                "fan_speed": decode(PARAM_FAN_SPEED, lambda v: codec.parameter_value_to_fan_speed(v).value),
                "airflow_vertical_direction": decode(PARAM_AIRFLOW_VERTICAL_DIRECTION, codec.parse_number),
                "airflow_vertical_swing": decode(PARAM_AIRFLOW_VERTICAL_SWING, toggle),
                "powerful": decode(PARAM_POWERFUL, toggle),
                "economy": decode(PARAM_ECONOMY, toggle),
                "energy_saving_fan": decode(PARAM_ENERGY_SAVING_FAN, toggle),
                "minimum_heat": decode(PARAM_MINIMUM_HEAT, toggle),
                "model": raw.get(PARAM_MODEL),
            },
            "raw": raw,
            "timestamp": time.time(),
        }

    @app.post("/devices/{device_id}/set", tags=["Devices"])
    async def set_device(
        device_id: str,
        power: Optional[Toggle] = None,
        mode: Optional[OperationMode] = None,
        temperature: Optional[float] = None,
        scale: TemperatureScale = TemperatureScale.CELSIUS,
        fan_speed: Optional[FanSpeed] = None,
        swing: Optional[Toggle] = None,
        airflow_direction: Optional[int] = None,
        powerful: Optional[Toggle] = None,
        economy: Optional[Toggle] = None,
        energy_saving_fan: Optional[Toggle] = None,
        minimum_heat: Optional[Toggle] = None,
        api_key: Optional[str] = Depends(get_api_key)
    ):
        """
        Control a device.

        Args:
            power: on/off
            mode: auto, cool, dry, fan or heat
            temperature: Target temperature in ``scale``, snapped to the nearest supported setpoint
            fan_speed: auto, quiet, low, medium or high
            swing: Vertical swing on/off
            airflow_direction: Vertical airflow direction (clamped to 1-4)
            powerful, economy, energy_saving_fan, minimum_heat: on/off

        Commands are sent in the order listed. Each is a separate request,
        so an error can leave earlier commands applied.
        """
        platform = require_platform()
        client = platform.client
        applied = {}
        try:
            record = client.registry.get(device_id)
            dev = record.device_id
            if power is not None:
                await client.set_power(dev, power)
                applied["power"] = power.value
            if mode is not None:
                await client.set_operation_mode(dev, mode)
                applied["mode"] = mode.value
            if temperature is not None:
                applied["temperature"] = await client.set_target_temperature(dev, temperature, scale)
                applied["scale"] = scale.value
            if fan_speed is not None:
                await client.set_fan_speed(dev, fan_speed)
                applied["fan_speed"] = fan_speed.value
            if swing is not None:
                await client.set_airflow_vertical_swing(dev, swing)
                applied["swing"] = swing.value
            if airflow_direction is not None:
                applied["airflow_direction"] = await client.set_airflow_vertical_direction(dev, airflow_direction)
            for name, value, setter in (
                ("powerful", powerful, client.set_powerful),
                ("economy", economy, client.set_economy),
                ("energy_saving_fan", energy_saving_fan, client.set_energy_saving_fan),
                ("minimum_heat", minimum_heat, client.set_minimum_heat),
            ):
                if value is not None:
                    await setter(dev, value)
                    applied[name] = value.value
        except AirstageError as e:
            logger.error(f"Command for {device_id} failed after applying {applied}: {e}")
            raise error_to_http(e)

        if not applied:
            raise HTTPException(status_code=400, detail="No control parameters provided")

        changes = await platform.refresh_all_accessory_characteristics(dev, True)
        return {
            "success": True,
            "device_id": dev,
            "device_name": record.name,
            "applied": applied,
            "notifications": changes,
        }

    @app.get("/accessories", tags=["HomeKit"])
    async def get_accessories(api_key: Optional[str] = Depends(get_api_key)):
        """All published accessories with their last known values."""
        platform = require_platform()
        return {
            "accessories": [a.accessory.to_dict() for a in platform.accessories.values()],
        }

    @app.get("/accessories/{aid}", tags=["HomeKit"])
    async def get_accessory(aid: int, api_key: Optional[str] = Depends(get_api_key)):
        platform = require_platform()
        accessory = platform.get_accessory_by_aid(aid)
        if accessory is None:
            raise HTTPException(status_code=404, detail=f"Accessory {aid} not found")
        return accessory.accessory.to_dict()

    def find_characteristic(platform, aid: int, name: str):
        accessory = platform.get_accessory_by_aid(aid)
        if accessory is None:
            raise HTTPException(status_code=404, detail=f"Accessory {aid} not found")
        char_type = get_characteristic_type(name)
        characteristic = accessory.accessory.find_characteristic(char_type) if char_type else None
        if characteristic is None:
            raise HTTPException(status_code=404, detail=f"Characteristic {name} not found on accessory {aid}")
        return accessory, characteristic

    @app.get("/accessories/{aid}/characteristics/{name}", tags=["HomeKit"])
    async def read_characteristic(aid: int, name: str, api_key: Optional[str] = Depends(get_api_key)):
        """Read a characteristic through its get handler (queries the device)."""
        platform = require_platform()
        accessory, characteristic = find_characteristic(platform, aid, name)
        try:
            value = await characteristic.handle_get()
        except (AirstageError, ValueError) as e:
            raise error_to_http(e)
        return {"aid": aid, "iid": characteristic.iid, "characteristic": characteristic.name, "value": value}

    @app.put("/accessories/{aid}/characteristics/{name}", tags=["HomeKit"])
    async def write_characteristic(aid: int, name: str, body: CharacteristicWrite,
                                   api_key: Optional[str] = Depends(get_api_key)):
        """Write a characteristic through its set handler."""
        platform = require_platform()
        accessory, characteristic = find_characteristic(platform, aid, name)
        try:
            await characteristic.handle_set(body.value)
        except (AirstageError, ValueError, PermissionError) as e:
            raise error_to_http(e)
        return {"aid": aid, "iid": characteristic.iid, "characteristic": characteristic.name,
                "value": characteristic.value, "success": True}

    @app.get("/events", tags=["Events"])
    async def get_events(api_key: Optional[str] = Depends(get_api_key)):
        """
        Server-Sent Events (SSE) endpoint for characteristic notifications.

        Event format:
           {
               "type": "characteristic",
               "aid": 2,
               "accessory": "Living Room Thermostat",
               "service": "Thermostat",
               "characteristic": "TargetTemperature",
               "value": 22.0,
               "previous": 21.5,
               "timestamp": 1730477890.123
           }

        A keepalive event is sent every 90 seconds without traffic.
        """
        platform = require_platform()

        async def event_publisher():
            client_queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)
            platform.host.event_listeners.append(client_queue)
            try:
                while True:
                    try:
                        event_data = await asyncio.wait_for(client_queue.get(), timeout=KEEPALIVE_INTERVAL)
                    except asyncio.TimeoutError:
                        yield f"data: {json.dumps({'type': 'keepalive', 'timestamp': time.time()})}\n\n"
                        continue

                    if event_data is None:
                        logger.debug("SSE stream received shutdown signal")
                        break
                    yield event_data
            finally:
                if client_queue in platform.host.event_listeners:
                    platform.host.event_listeners.remove(client_queue)

        return StreamingResponse(
            event_publisher(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/refresh", tags=["Admin"])
    async def refresh_data(api_key: Optional[str] = Depends(get_api_key)):
        """Refresh all accessories from the devices, notifying every value."""
        platform = require_platform()
        notifications = await platform.refresh_all(only_notify_on_change=False)
        return {"success": True, "notifications": notifications, "timestamp": time.time()}
