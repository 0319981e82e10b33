import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from airstage_local.client import LocalClient
from airstage_local.config import parse_config
from airstage_local.exceptions import ConfigurationError, DeviceTimeoutError, ProtocolError
from airstage_local.homekit import CHAR_TARGET_TEMPERATURE, AccessoryHost
from airstage_local.platform import AirstagePlatform, accessory_name, accessory_uuid
from airstage_local.registry import DeviceRecord, DeviceRegistry
from airstage_local.scheduler import RequestScheduler

DEVICE_ID = "A0B1C2D3E4F5"
OTHER_ID = "112233445566"


def make_platform(transport, validator=None, **config):
    config.setdefault('devices', [{'ip_address': '192.168.1.50', 'name': 'Living Room', 'poll_interval': 0}])
    client = LocalClient(DeviceRegistry(), transport,
                         scheduler_factory=lambda: RequestScheduler(request_delay=0))
    return AirstagePlatform(parse_config(config), client, AccessoryHost(), validator=validator)


def validator_returning(*results):
    return Mock(validate=AsyncMock(side_effect=list(results)))


@pytest.fixture
def living_room():
    return DeviceRecord(DEVICE_ID, 0, "192.168.1.50", "Living Room")


class TestNaming:
    def test_accessory_name(self):
        assert accessory_name("Living Room", "energy-saving-fan") == "Living Room Energy Saving Fan"
        assert accessory_name("Living Room", "thermostat") == "Living Room Thermostat"

    def test_accessory_uuid_is_stable_and_distinct(self):
        assert accessory_uuid(DEVICE_ID, 'fan') == accessory_uuid(DEVICE_ID, 'fan')
        assert accessory_uuid(DEVICE_ID, 'fan') != accessory_uuid(OTHER_ID, 'fan')


class TestSetup:
    @pytest.mark.asyncio
    async def test_registers_default_accessories(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))

        records = await platform.setup(start_polling=False)

        assert records == [living_room]
        assert DEVICE_ID in platform.client.registry
        suffixes = sorted(a.suffix for a in platform.get_device_accessories(DEVICE_ID))
        assert suffixes == ['fan', 'thermostat']
        assert len(platform.host.accessories) == 2
        thermostat = platform.get_device_accessories(DEVICE_ID, ['thermostat'])[0]
        assert thermostat.accessory.context['model'] == 'AS-ABC'

    @pytest.mark.asyncio
    async def test_excludes_failing_devices(self, transport, living_room):
        devices = [
            {'ip_address': '192.168.1.50', 'name': 'Living Room'},
            {'ip_address': '192.168.1.51', 'name': 'Bedroom'},
            {'ip_address': '192.168.1.52', 'name': 'Office'},
            {'ip_address': '192.168.1.53', 'name': 'Attic'},
        ]
        validator = validator_returning(
            living_room,
            DeviceTimeoutError("Request timeout (5000ms)", code='TIMEOUT'),
            ProtocolError("API Error: 0001"),
            ConfigurationError("Could not determine the device ID"),
        )
        platform = make_platform(transport, validator, devices=devices)

        records = await platform.setup(start_polling=False)

        assert [r.device_id for r in records] == [DEVICE_ID]
        assert [d['name'] for d in platform.excluded_devices] == ['Bedroom', 'Office', 'Attic']
        assert len(platform.client.registry) == 1

    @pytest.mark.asyncio
    async def test_invalid_device_entry_excluded_others_continue(self, transport, living_room):
        devices = [
            {'ip_address': '192.168.1.50', 'name': 'Living Room'},
            {'ip_address': '192.168.1.51', 'name': 'Bedroom', 'device_id': 'not-a-mac'},
        ]
        validator = validator_returning(living_room)
        platform = make_platform(transport, validator, devices=devices)

        records = await platform.setup(start_polling=False)

        assert records == [living_room]
        assert validator.validate.await_count == 1
        assert [d['name'] for d in platform.excluded_devices] == ['Bedroom']
        assert platform.excluded_devices[0]['ip_address'] == '192.168.1.51'
        assert 'device_id' in platform.excluded_devices[0]['reason']
        assert platform.get_status()['excluded_devices'] == platform.excluded_devices

    @pytest.mark.asyncio
    async def test_enable_flags(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room),
                                 enable_fan=False, enable_economy_switch=True)
        await platform.setup(start_polling=False)

        suffixes = sorted(a.suffix for a in platform.get_device_accessories(DEVICE_ID))
        assert suffixes == ['economy', 'thermostat']

    @pytest.mark.asyncio
    async def test_disabling_unregisters(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        assert platform.host.get_accessory(accessory_uuid(DEVICE_ID, 'fan')) is not None

        platform.config.enable_fan = False
        await platform.configure_device_accessories(living_room)

        assert platform.host.get_accessory(accessory_uuid(DEVICE_ID, 'fan')) is None
        assert [a.suffix for a in platform.get_device_accessories(DEVICE_ID)] == ['thermostat']

    @pytest.mark.asyncio
    async def test_model_read_failure_is_not_fatal(self, transport, living_room):
        del transport.values['iu_model']
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        thermostat = platform.get_device_accessories(DEVICE_ID, ['thermostat'])[0]
        assert thermostat.accessory.context['model'] is None

    @pytest.mark.asyncio
    async def test_remembers_devices(self, transport, living_room):
        preferences = Mock()
        platform = make_platform(transport, validator_returning(living_room))
        platform.preferences = preferences
        await platform.setup(start_polling=False)
        preferences.remember_device.assert_called_once_with(living_room)

    def test_register_accessory_is_idempotent(self, transport, living_room):
        platform = make_platform(transport)
        platform.client.registry.register([living_room])
        first = platform.register_accessory(living_room, 'thermostat')
        assert platform.register_accessory(living_room, 'thermostat') is first
        assert platform.get_accessory_by_aid(first.accessory.aid) is first

    def test_unknown_suffix(self, transport, living_room):
        platform = make_platform(transport)
        with pytest.raises(ValueError):
            platform.register_accessory(living_room, 'dehumidifier')


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_all(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)

        results = await platform.refresh_all()
        # 5 thermostat + 5 fan characteristics
        assert results == {DEVICE_ID: 10}
        assert await platform.refresh_all(only_notify_on_change=True) == {DEVICE_ID: 0}

    @pytest.mark.asyncio
    async def test_request_refresh_runs_in_background(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        transport.values['iu_set_tmp'] = '250'

        task = platform.request_refresh(DEVICE_ID, ['thermostat'])
        await task

        thermostat = platform.get_device_accessories(DEVICE_ID, ['thermostat'])[0]
        assert thermostat.accessory.find_characteristic(CHAR_TARGET_TEMPERATURE).value == 25.0
        assert platform.background_tasks == []

    @pytest.mark.asyncio
    async def test_refresh_events_reach_host_listeners(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        queue = asyncio.Queue()
        platform.host.event_listeners.append(queue)

        await platform.refresh_all_accessory_characteristics(DEVICE_ID, suffixes=['fan'])
        assert queue.qsize() == 5


class TestPolling:
    @pytest.mark.asyncio
    async def test_start_polling_skips_disabled(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup()
        assert platform.polling_tasks == {}

    @pytest.mark.asyncio
    async def test_start_polling(self, transport, living_room):
        devices = [{'ip_address': '192.168.1.50', 'poll_interval': 60}]
        platform = make_platform(transport, validator_returning(living_room), devices=devices)
        await platform.setup()
        assert list(platform.polling_tasks) == [DEVICE_ID]
        await platform.cleanup()
        assert platform.polling_tasks == {}

    @pytest.mark.asyncio
    async def test_polling_loop_refreshes(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)

        task = asyncio.create_task(platform.background_polling_loop(DEVICE_ID, 0.01))
        platform.background_tasks.append(task)
        for _ in range(100):
            if DEVICE_ID in platform.last_poll:
                break
            await asyncio.sleep(0.01)

        assert DEVICE_ID in platform.last_poll
        await platform.cleanup()
        assert task.done()

    @pytest.mark.asyncio
    async def test_polling_survives_unreachable_device(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        transport.error = DeviceTimeoutError("Request timeout (5000ms)", code='TIMEOUT')

        task = asyncio.create_task(platform.background_polling_loop(DEVICE_ID, 0.01))
        platform.background_tasks.append(task)
        for _ in range(100):
            if DEVICE_ID in platform.last_poll:
                break
            await asyncio.sleep(0.01)

        assert not task.done()
        assert platform.synchronizer.error_count > 0
        await platform.cleanup()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_status(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        await platform.refresh_all()

        status = platform.get_status()
        assert status['devices'] == 1
        assert status['accessories'] == 2
        assert status['polling'] == {DEVICE_ID: {'interval': 0, 'last_poll': None}}
        assert status['schedulers'][DEVICE_ID]['completed'] > 0

    @pytest.mark.asyncio
    async def test_cleanup_closes_listeners(self, transport, living_room):
        platform = make_platform(transport, validator_returning(living_room))
        await platform.setup(start_polling=False)
        queue = asyncio.Queue()
        platform.host.event_listeners.append(queue)

        await platform.cleanup()

        assert platform.is_shutting_down
        assert queue.get_nowait() is None
        assert platform.request_refresh(DEVICE_ID) is None
