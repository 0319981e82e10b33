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

"""Airstage platform - devices, their accessories and background polling."""

import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional, Union

from .accessories import (
    SWITCH_FEATURES,
    AirstageAccessory,
    FanAccessory,
    FeatureSwitchAccessory,
    ThermostatAccessory,
)
from .client import LocalClient
from .config import DeviceConfig, PlatformConfig, RejectedDevice
from .database import PreferenceStore
from .exceptions import AirstageError, ConfigurationError, ProtocolError, TransportError
from .homekit import AccessoryHost, PlatformAccessory, generate_uuid
from .registry import DeviceRecord
from .sync import CharacteristicSynchronizer
from .validator import DeviceValidator

logger = logging.getLogger('airstage-local')

ACCESSORY_SUFFIXES = ('thermostat', 'fan') + tuple(SWITCH_FEATURES)


def accessory_uuid(device_id: str, suffix: str) -> str:
    return generate_uuid(f"{device_id}-{suffix}")


def accessory_name(device_name: str, suffix: str) -> str:
    """'Living Room' + 'energy-saving-fan' -> 'Living Room Energy Saving Fan'."""
    words = ' '.join(part.capitalize() for part in suffix.split('-'))
    return f"{device_name} {words}"


class AirstagePlatform:
    """Owns the accessories of all validated devices.

    Startup validates every configured device (excluding the ones that fail),
    registers them with the client's registry and publishes one accessory
    per enabled feature on the host. Afterwards a polling task per device
    refreshes its accessories with change detection.
    """

    def __init__(self, config: PlatformConfig, client: LocalClient, host: AccessoryHost,
                 synchronizer: Optional[CharacteristicSynchronizer] = None,
                 validator: Optional[DeviceValidator] = None,
                 preferences: Optional[PreferenceStore] = None):
        self.config = config
        self.client = client
        self.host = host
        self.synchronizer = synchronizer or CharacteristicSynchronizer()
        self.validator = validator or DeviceValidator(client.transport, preferences)
        self.preferences = preferences
        self.accessories: Dict[str, AirstageAccessory] = {}
        self.poll_intervals: Dict[str, int] = {}
        self.excluded_devices: List[dict] = []
        self.background_tasks: List[asyncio.Task] = []
        self.polling_tasks: Dict[str, asyncio.Task] = {}
        self.last_poll: Dict[str, float] = {}
        self.started_at: Optional[float] = None
        self.is_shutting_down = False

    # === STARTUP ===

    async def setup(self, start_polling: bool = True) -> List[DeviceRecord]:
        """Validate devices, register them and publish their accessories."""
        self.started_at = time.time()
        records = []
        for rejected in self.config.rejected_devices:
            self._exclude(rejected, rejected.reason)
            logger.warning(f"{rejected.display_name}: check ip_address and device_id in the configuration")

        for device in self.config.devices:
            record = await self._validate_device(device)
            if record is None:
                continue
            try:
                self.client.registry.register([record])
            except ConfigurationError as e:
                self._exclude(device, str(e))
                continue
            self.poll_intervals[record.device_id] = device.poll_interval
            records.append(record)
            if self.preferences is not None:
                self.preferences.remember_device(record)

        for record in records:
            await self.configure_device_accessories(record)

        logger.info(f"Platform ready: {len(records)} device(s), {len(self.accessories)} accessories"
                    + (f", {len(self.excluded_devices)} excluded" if self.excluded_devices else ""))

        if start_polling:
            self.start_polling()
        return records

    async def _validate_device(self, device: DeviceConfig) -> Optional[DeviceRecord]:
        label = device.display_name
        try:
            return await self.validator.validate(device)
        except ConfigurationError as e:
            self._exclude(device, str(e))
            logger.warning(f"{label}: check ip_address and device_id in the configuration")
        except TransportError as e:
            self._exclude(device, str(e))
            logger.warning(f"{label}: make sure the unit is powered, on the same network "
                           "and has local control enabled on its WLAN adapter")
        except ProtocolError as e:
            self._exclude(device, str(e))
            logger.warning(f"{label}: the unit answered but rejected the test read, "
                           "the configured device_id may belong to another device")
        return None

    def _exclude(self, device: Union[DeviceConfig, RejectedDevice], reason: str):
        logger.warning(f"Excluding device {device.display_name} ({device.ip_address}): {reason}")
        self.excluded_devices.append({
            'ip_address': device.ip_address,
            'name': device.display_name,
            'reason': reason,
        })

    async def _read_model(self, record: DeviceRecord) -> Optional[str]:
        try:
            return await self.client.get_model(record.device_id)
        except AirstageError as e:
            logger.debug(f"{record.name}: could not read model: {e}")
            return None

    # === ACCESSORIES ===

    async def configure_device_accessories(self, record: DeviceRecord):
        """Register enabled accessories of a device and drop disabled ones."""
        enabled = set(self.config.enabled_suffixes())
        model = await self._read_model(record) if enabled else None
        for suffix in ACCESSORY_SUFFIXES:
            if suffix in enabled:
                self.register_accessory(record, suffix, model)
            else:
                self.unregister_accessory(record.device_id, suffix)

    def register_accessory(self, record: DeviceRecord, suffix: str,
                           model: Optional[str] = None) -> AirstageAccessory:
        uuid = accessory_uuid(record.device_id, suffix)
        existing = self.accessories.get(uuid)
        if existing is not None:
            return existing

        platform_accessory = self.host.get_accessory(uuid)
        if platform_accessory is None:
            platform_accessory = PlatformAccessory(accessory_name(record.name, suffix), uuid)
            platform_accessory.context.update({
                'device_id': record.device_id,
                'suffix': suffix,
                'model': model,
            })

        accessory = self._create_accessory(platform_accessory, record.device_id, suffix)
        self.accessories[uuid] = accessory
        self.host.register_platform_accessories([platform_accessory])
        return accessory

    def _create_accessory(self, platform_accessory: PlatformAccessory, device_id: str,
                          suffix: str) -> AirstageAccessory:
        if suffix == ThermostatAccessory.suffix:
            return ThermostatAccessory(self, platform_accessory, device_id)
        if suffix == FanAccessory.suffix:
            return FanAccessory(self, platform_accessory, device_id)
        if suffix in SWITCH_FEATURES:
            return FeatureSwitchAccessory(self, platform_accessory, device_id, suffix)
        raise ValueError(f"Unknown accessory type: {suffix}")

    def unregister_accessory(self, device_id: str, suffix: str) -> bool:
        uuid = accessory_uuid(device_id, suffix)
        accessory = self.accessories.pop(uuid, None)
        platform_accessory = accessory.accessory if accessory else self.host.get_accessory(uuid)
        if platform_accessory is None:
            return False
        self.host.unregister_platform_accessories([platform_accessory])
        self.synchronizer.cache.discard(platform_accessory)
        return True

    def get_device_accessories(self, device_id: str,
                               suffixes: Optional[Iterable[str]] = None) -> List[AirstageAccessory]:
        device_id = self.client.registry.get(device_id).device_id
        wanted = set(suffixes) if suffixes is not None else None
        return [
            accessory for accessory in self.accessories.values()
            if accessory.device_id == device_id and (wanted is None or accessory.suffix in wanted)
        ]

    def get_accessory_by_aid(self, aid: int) -> Optional[AirstageAccessory]:
        for accessory in self.accessories.values():
            if accessory.accessory.aid == aid:
                return accessory
        return None

    # === REFRESH ===

    async def refresh_all_accessory_characteristics(self, device_id: str,
                                                    only_notify_on_change: bool = False,
                                                    suffixes: Optional[Iterable[str]] = None) -> int:
        """Refresh every accessory of a device. Returns notifications sent."""
        accessories = self.get_device_accessories(device_id, suffixes)
        results = await asyncio.gather(*[
            accessory.refresh(only_notify_on_change) for accessory in accessories
        ])
        return sum(results)

    async def refresh_all(self, only_notify_on_change: bool = False) -> Dict[str, int]:
        results = {}
        for record in self.client.get_devices():
            results[record.device_id] = await self.refresh_all_accessory_characteristics(
                record.device_id, only_notify_on_change)
        return results

    def request_refresh(self, device_id: str, suffixes: Optional[Iterable[str]] = None):
        """Refresh a device's accessories in the background after a command."""
        if self.is_shutting_down:
            return None
        suffixes = list(suffixes) if suffixes is not None else None
        task = asyncio.create_task(self._refresh_after_command(device_id, suffixes))
        self.background_tasks.append(task)
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task):
        if task in self.background_tasks:
            self.background_tasks.remove(task)

    async def _refresh_after_command(self, device_id: str, suffixes: Optional[List[str]]):
        try:
            await self.refresh_all_accessory_characteristics(device_id, False, suffixes)
        except AirstageError as e:
            logger.error(f"Refresh after command failed for {device_id}: {e}")

    # === POLLING ===

    def start_polling(self):
        for device_id, interval in self.poll_intervals.items():
            if interval <= 0:
                logger.info(f"Polling disabled for {self.client.get_name(device_id)}")
                continue
            if device_id in self.polling_tasks:
                continue
            logger.info(f"Polling {self.client.get_name(device_id)} every {interval}s")
            task = asyncio.create_task(self.background_polling_loop(device_id, interval))
            self.polling_tasks[device_id] = task
            self.background_tasks.append(task)

    async def background_polling_loop(self, device_id: str, interval: float):
        """Refresh a device every ``interval`` seconds.

        A cycle starts only after the previous one finished, so polls never
        pile up on a slow or unreachable device.
        """
        while not self.is_shutting_down:
            try:
                await asyncio.sleep(interval)
                if self.is_shutting_down:
                    break
                changes = await self.refresh_all_accessory_characteristics(device_id, True)
                self.last_poll[device_id] = time.time()
                if changes:
                    logger.debug(f"Poll of {self.client.get_name(device_id)}: {changes} change(s)")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in polling loop for {device_id}: {e}")

    # === LIFECYCLE ===

    def get_status(self) -> dict:
        return {
            'devices': len(self.client.registry),
            'excluded_devices': list(self.excluded_devices),
            'accessories': len(self.accessories),
            'polling': {
                device_id: {
                    'interval': self.poll_intervals.get(device_id, 0),
                    'last_poll': self.last_poll.get(device_id),
                }
                for device_id in self.poll_intervals
            },
            'schedulers': {device_id: s.to_dict() for device_id, s in self.client.schedulers.items()},
            'sync': {
                'refreshes': self.synchronizer.refresh_count,
                'notifications': self.synchronizer.notification_count,
                'errors': self.synchronizer.error_count,
            },
            'uptime': time.time() - self.started_at if self.started_at else 0,
        }

    async def cleanup(self):
        """Stop polling and pending refreshes, cancel queued requests."""
        logger.info("Starting cleanup...")
        self.is_shutting_down = True

        if self.background_tasks:
            logger.info(f"Cancelling {len(self.background_tasks)} background tasks")
            tasks = list(self.background_tasks)
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.background_tasks.clear()
            self.polling_tasks.clear()

        await self.client.close()
        self.host.close_listeners()
        logger.info("Cleanup complete")
