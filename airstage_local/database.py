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

"""SQLite state for Airstage Local: display preferences and known devices."""

import logging
import sqlite3
from typing import Dict, Optional

from .const import TemperatureScale
from .registry import DeviceRecord

logger = logging.getLogger(__name__)

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS device_preferences (
    device_id TEXT PRIMARY KEY,
    temperature_unit TEXT NOT NULL DEFAULT 'C',
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS devices (
    device_id TEXT PRIMARY KEY,
    device_sub_id INTEGER NOT NULL DEFAULT 0,
    ip_address TEXT NOT NULL,
    name TEXT,
    first_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_devices_ip ON devices(ip_address);
"""

SUPPORTED_SCHEMA_VERSION = 1


def ensure_schema_and_migrate(db_path: str):
    """Create the schema and stamp it using PRAGMA user_version.

    Databases written by a newer release are refused. Future schema changes
    add a ``current_version < N`` step here.
    """
    conn = sqlite3.connect(db_path)
    try:
        current_version = conn.execute("PRAGMA user_version").fetchone()[0]
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})")

        conn.executescript(DB_SCHEMA)
        if current_version < SUPPORTED_SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {SUPPORTED_SCHEMA_VERSION}")
            logger.debug(f"Created schema version {SUPPORTED_SCHEMA_VERSION} in {db_path}")
        conn.commit()
    finally:
        conn.close()


class PreferenceStore:
    """Per-device preferences and the last known address of each device.

    Preferences are cached in memory and only written when they change.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        ensure_schema_and_migrate(db_path)
        self._temperature_units: Dict[str, TemperatureScale] = {}
        self._load_from_db()

    def _load_from_db(self):
        conn = sqlite3.connect(self.db_path)
        try:
            for device_id, unit in conn.execute("SELECT device_id, temperature_unit FROM device_preferences"):
                try:
                    self._temperature_units[device_id] = TemperatureScale(unit)
                except ValueError:
                    logger.warning(f"Ignoring invalid temperature unit {unit!r} stored for {device_id}")
        finally:
            conn.close()
        logger.debug(f"Loaded preferences for {len(self._temperature_units)} device(s) from {self.db_path}")

    def get_temperature_scale(self, device_id: str) -> TemperatureScale:
        return self._temperature_units.get(device_id, TemperatureScale.CELSIUS)

    def set_temperature_scale(self, device_id: str, scale: TemperatureScale):
        scale = TemperatureScale(scale)
        if self._temperature_units.get(device_id) == scale:
            return
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                INSERT INTO device_preferences (device_id, temperature_unit, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(device_id) DO UPDATE SET
                    temperature_unit = excluded.temperature_unit,
                    updated_at = CURRENT_TIMESTAMP
            """, (device_id, scale.value))
            conn.commit()
        finally:
            conn.close()
        self._temperature_units[device_id] = scale

    def remember_device(self, record: DeviceRecord):
        """Record a validated device so its identifier survives ARP misses."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                INSERT INTO devices (device_id, device_sub_id, ip_address, name)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(device_id) DO UPDATE SET
                    device_sub_id = excluded.device_sub_id,
                    ip_address = excluded.ip_address,
                    name = excluded.name,
                    last_seen = CURRENT_TIMESTAMP
            """, (record.device_id, record.device_sub_id, record.ip_address, record.name))
            conn.commit()
        finally:
            conn.close()

    def known_device_id(self, ip_address: str) -> Optional[str]:
        """Identifier last seen at this address, if any."""
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT device_id FROM devices WHERE ip_address = ? ORDER BY last_seen DESC LIMIT 1",
                (ip_address,)
            ).fetchone()
        finally:
            conn.close()
        return row[0] if row else None
