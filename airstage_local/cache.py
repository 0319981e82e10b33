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
"""Last known characteristic values, per accessory."""

import logging
import weakref
from typing import Any, Dict, Optional

from .homekit import PlatformAccessory, get_characteristic_name

logger = logging.getLogger(__name__)

_UNKNOWN = object()


class AccessoryState:
    """Last observed value of each characteristic of one accessory."""

    def __init__(self):
        self.last_known: Dict[str, Any] = {}

    def get(self, char_type: str, default: Any = None) -> Any:
        return self.last_known.get(char_type, default)

    def has_value_changed(self, char_type: str, value: Any) -> bool:
        """True if the value differs from the last one, or none was seen yet."""
        previous = self.last_known.get(char_type, _UNKNOWN)
        return previous is _UNKNOWN or previous != value

    def set_last_known_value(self, char_type: str, value: Any):
        self.last_known[char_type] = value

    def to_dict(self) -> Dict[str, Any]:
        return {get_characteristic_name(k): v for k, v in self.last_known.items()}


class CharacteristicStateCache:
    """Maps accessories to their AccessoryState without keeping them alive.

    Entries disappear together with the accessory object.
    """

    def __init__(self):
        self._states: 'weakref.WeakKeyDictionary[PlatformAccessory, AccessoryState]' = weakref.WeakKeyDictionary()

    def for_accessory(self, accessory: PlatformAccessory) -> AccessoryState:
        state = self._states.get(accessory)
        if state is None:
            state = AccessoryState()
            self._states[accessory] = state
            logger.debug(f"Created state cache for {accessory.display_name}")
        return state

    def peek(self, accessory: PlatformAccessory) -> Optional[AccessoryState]:
        return self._states.get(accessory)

    def discard(self, accessory: PlatformAccessory):
        self._states.pop(accessory, None)

    def __len__(self) -> int:
        return len(self._states)
