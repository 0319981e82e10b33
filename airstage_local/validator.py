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

"""Startup validation of configured devices.

Turns a DeviceConfig into a DeviceRecord the registry accepts: checks the
address, makes sure the unit answers HTTP, finds its identifier in the ARP
table when none is configured and confirms the identifier with a test read.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional

from .config import DeviceConfig, is_valid_ipv4
from .const import ENDPOINT_GET_PARAM, PARAM_POWER
from .database import PreferenceStore
from .exceptions import ConfigurationError, ProtocolError
from .models import GetParamRequest, to_payload
from .registry import DeviceRecord, is_valid_device_id, normalize_device_id
from .transport import LocalTransport

logger = logging.getLogger(__name__)

ARP_TABLE_PATH = '/proc/net/arp'
ARP_COMMAND_TIMEOUT = 5.0

_MAC_PATTERN = re.compile(r'\b([0-9A-Fa-f]{1,2}(?:[:-][0-9A-Fa-f]{1,2}){5})\b')
_EMPTY_MAC = '000000000000'


def _mac_to_device_id(mac: str) -> Optional[str]:
    # macOS prints octets without leading zeros (a:b:c:...)
    octets = re.split(r'[:-]', mac)
    device_id = normalize_device_id(''.join(octet.zfill(2) for octet in octets))
    if device_id == _EMPTY_MAC or not is_valid_device_id(device_id):
        return None
    return device_id


def parse_proc_arp(text: str, ip_address: str) -> Optional[str]:
    """Find the device identifier for an address in /proc/net/arp content."""
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 4 or fields[0] != ip_address:
            continue
        # Flags 0x0 means an incomplete entry
        if fields[2] == '0x0':
            return None
        return _mac_to_device_id(fields[3])
    return None


def parse_arp_output(text: str, ip_address: str) -> Optional[str]:
    """Find the device identifier in the output of ``arp -n <ip>``."""
    for line in text.splitlines():
        if not re.search(rf'(^|[\s(]){re.escape(ip_address)}([\s)]|$)', line):
            continue
        match = _MAC_PATTERN.search(line)
        if match:
            return _mac_to_device_id(match.group(1))
    return None


async def _run_arp_command(ip_address: str) -> str:
    process = await asyncio.create_subprocess_exec(
        'arp', '-n', ip_address,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), ARP_COMMAND_TIMEOUT)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return stdout.decode(errors='replace')


async def detect_device_id(ip_address: str, arp_table_path: str = ARP_TABLE_PATH) -> Optional[str]:
    """Look up the MAC address of a host in the ARP table.

    The host should have been contacted shortly before, otherwise it may not
    be in the table yet.
    """
    arp_table = Path(arp_table_path)
    if arp_table.exists():
        device_id = parse_proc_arp(arp_table.read_text(), ip_address)
        if device_id:
            logger.debug(f"Found {device_id} for {ip_address} in {arp_table_path}")
            return device_id

    try:
        output = await _run_arp_command(ip_address)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug(f"arp lookup for {ip_address} failed: {e}")
        return None

    device_id = parse_arp_output(output, ip_address)
    if device_id:
        logger.debug(f"Found {device_id} for {ip_address} using arp")
    return device_id


class DeviceValidator:
    """Validates configured devices before they are registered."""

    def __init__(self, transport: LocalTransport, preferences: Optional[PreferenceStore] = None):
        self.transport = transport
        self.preferences = preferences

    async def check_connectivity(self, ip_address: str) -> int:
        status = await self.transport.probe(ip_address)
        logger.debug(f"{ip_address} answered HTTP {status}")
        return status

    async def resolve_device_id(self, device: DeviceConfig) -> str:
        if device.device_id:
            return device.device_id

        device_id = await detect_device_id(device.ip_address)
        if device_id:
            logger.info(f"Auto-detected device ID {device_id} for {device.ip_address}")
            return device_id

        if self.preferences is not None:
            device_id = self.preferences.known_device_id(device.ip_address)
            if device_id:
                logger.info(f"Using previously seen device ID {device_id} for {device.ip_address}")
                return device_id

        raise ConfigurationError(
            f"Could not determine the device ID for {device.ip_address}: "
            "not found in the ARP table, configure device_id explicitly"
        )

    async def validate_device_record(self, record: DeviceRecord):
        """Read the power parameter to confirm the unit accepts this identity."""
        request = GetParamRequest.for_device(record, [PARAM_POWER])
        values = await self.transport.send(record, ENDPOINT_GET_PARAM, to_payload(request))
        if PARAM_POWER not in values:
            raise ProtocolError(f"Device {record.device_id} at {record.ip_address} did not report {PARAM_POWER}")

    async def validate(self, device: DeviceConfig) -> DeviceRecord:
        """Run all checks and return the device record.

        Raises:
            ConfigurationError: bad address or identifier
            TransportError: the unit is not reachable
            ProtocolError: the unit rejected the test read
        """
        if not is_valid_ipv4(device.ip_address):
            raise ConfigurationError(f"Invalid IPv4 address: {device.ip_address}")

        await self.check_connectivity(device.ip_address)
        device_id = await self.resolve_device_id(device)

        record = DeviceRecord(
            device_id=device_id,
            device_sub_id=device.device_sub_id,
            ip_address=device.ip_address,
            name=device.name or device_id,
        )
        await self.validate_device_record(record)
        logger.info(f"Validated {record.name} ({record.device_id}) at {record.ip_address}")
        return record
