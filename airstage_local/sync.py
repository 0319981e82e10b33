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

"""Push fresh device values into accessory characteristics."""

import asyncio
import logging
from typing import Iterable, Optional

from .cache import CharacteristicStateCache
from .homekit import Characteristic, PlatformAccessory

logger = logging.getLogger('airstage-local')


class CharacteristicSynchronizer:
    """Refreshes characteristics by calling their get handlers.

    With change detection enabled a notification is only sent for values
    that differ from the last one seen (the first observation always
    counts as a change). The cache is updated on every successful read.
    """

    def __init__(self, cache: Optional[CharacteristicStateCache] = None):
        self.cache = cache or CharacteristicStateCache()
        self.refresh_count = 0
        self.notification_count = 0
        self.error_count = 0

    async def refresh(self, accessory: PlatformAccessory, characteristic_types: Iterable[str],
                      only_notify_on_change: bool = False) -> int:
        """Refresh the given characteristics of an accessory.

        A failing characteristic is logged and skipped; the others are
        still refreshed. Returns the number of notifications sent.
        """
        characteristics = []
        for char_type in characteristic_types:
            characteristic = accessory.find_characteristic(char_type)
            if characteristic is None:
                logger.debug(f"{accessory.display_name}: no characteristic {char_type}, skipping")
                continue
            characteristics.append(characteristic)

        if not characteristics:
            return 0

        self.refresh_count += 1
        state = self.cache.for_accessory(accessory)
        results = await asyncio.gather(*[
            self._refresh_characteristic(accessory, state, characteristic, only_notify_on_change)
            for characteristic in characteristics
        ])
        return sum(1 for notified in results if notified)

    async def _refresh_characteristic(self, accessory: PlatformAccessory, state,
                                      characteristic: Characteristic,
                                      only_notify_on_change: bool) -> bool:
        previous = characteristic.value
        try:
            value = await characteristic.handle_get()
        except Exception as e:
            self.error_count += 1
            logger.error(f"{accessory.display_name}: failed to refresh {characteristic.name}: {e}")
            return False

        changed = state.has_value_changed(characteristic.type, value)
        state.set_last_known_value(characteristic.type, value)

        if only_notify_on_change and not changed:
            logger.debug(f"{accessory.display_name}: {characteristic.name} unchanged ({value})")
            return False

        logger.debug(f"{accessory.display_name}: {characteristic.name} = {value}")
        characteristic.update_value(value, previous=previous)
        self.notification_count += 1
        return True
