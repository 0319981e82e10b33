import asyncio
import json

import pytest

from airstage_local.homekit import (
    CHAR_CURRENT_TEMPERATURE,
    CHAR_NAME,
    CHAR_ON,
    CHAR_TARGET_HEATING_COOLING_STATE,
    CHAR_TARGET_TEMPERATURE,
    SERVICE_SWITCH,
    SERVICE_THERMOSTAT,
    AccessoryHost,
    PlatformAccessory,
    generate_uuid,
    get_characteristic_type,
)


def make_switch(name="Living Room Economy", uuid="UUID-SWITCH"):
    accessory = PlatformAccessory(name, uuid)
    accessory.add_service(SERVICE_SWITCH, name).add_characteristic(CHAR_ON)
    return accessory


class TestCharacteristic:
    @pytest.mark.asyncio
    async def test_set_runs_handler_with_validated_value(self):
        accessory = PlatformAccessory("Thermostat", "UUID-T")
        characteristic = accessory.add_service(SERVICE_THERMOSTAT).add_characteristic(
            CHAR_TARGET_HEATING_COOLING_STATE)
        written = []

        async def on_set(value):
            written.append(value)

        characteristic.on_set(on_set)
        await characteristic.handle_set(2.0)
        assert written == [2]
        assert characteristic.value == 2

    @pytest.mark.asyncio
    async def test_invalid_values_rejected(self):
        characteristic = PlatformAccessory("T", "U").add_service(SERVICE_THERMOSTAT).add_characteristic(
            CHAR_TARGET_HEATING_COOLING_STATE)
        with pytest.raises(ValueError):
            await characteristic.handle_set(7)
        with pytest.raises(ValueError):
            await characteristic.handle_set("cool")

    @pytest.mark.asyncio
    async def test_read_only(self):
        characteristic = PlatformAccessory("T", "U").add_service(SERVICE_THERMOSTAT).add_characteristic(
            CHAR_CURRENT_TEMPERATURE)
        with pytest.raises(PermissionError):
            await characteristic.handle_set(20)

    @pytest.mark.asyncio
    async def test_failed_handler_restores_value(self):
        characteristic = make_switch().find_characteristic(CHAR_ON)
        characteristic.value = False

        async def on_set(value):
            raise RuntimeError("unit offline")

        characteristic.on_set(on_set)
        with pytest.raises(RuntimeError):
            await characteristic.handle_set(True)
        assert characteristic.value is False

    @pytest.mark.asyncio
    async def test_handler_pushing_applied_value_reports_previous(self):
        characteristic = PlatformAccessory("T", "U").add_service(SERVICE_THERMOSTAT).add_characteristic(
            CHAR_TARGET_TEMPERATURE)
        characteristic.value = 21.0
        events = []
        characteristic.subscribe(lambda char, value, previous: events.append((value, previous)))

        async def on_set(value):
            characteristic.update_value(22.5)

        characteristic.on_set(on_set)
        await characteristic.handle_set(22.3)
        assert events == [(22.5, 21.0)]
        assert characteristic.value == 22.5

    def test_props_constrain_values(self):
        characteristic = PlatformAccessory("T", "U").add_service(SERVICE_THERMOSTAT).add_characteristic(
            CHAR_TARGET_TEMPERATURE)
        characteristic.set_props(minValue=16, maxValue=30)
        assert characteristic.validate(22.5) == 22.5
        with pytest.raises(ValueError):
            characteristic.validate(31)

    def test_to_dict_names_values(self):
        characteristic = PlatformAccessory("T", "U").add_service(SERVICE_THERMOSTAT).add_characteristic(
            CHAR_TARGET_HEATING_COOLING_STATE)
        characteristic.value = 3
        data = characteristic.to_dict()
        assert data['name'] == "TargetHeatingCoolingState"
        assert data['value_name'] == "Auto"


class TestPlatformAccessory:
    def test_information_service_has_name(self):
        accessory = make_switch()
        assert accessory.find_characteristic(CHAR_NAME).value == "Living Room Economy"
        assert accessory.primary_service.type == SERVICE_SWITCH

    def test_iids_are_unique(self):
        accessory = make_switch()
        iids = []
        for service in accessory.services:
            iids.append(service.iid)
            iids.extend(c.iid for c in service.characteristics)
        assert len(iids) == len(set(iids))

    def test_name_lookup(self):
        assert get_characteristic_type("On") == CHAR_ON
        assert get_characteristic_type(CHAR_ON.lower()) == CHAR_ON
        assert get_characteristic_type("Bogus") is None

    def test_uuid_is_stable(self):
        assert generate_uuid("A0B1C2D3E4F5-fan") == generate_uuid("A0B1C2D3E4F5-fan")
        assert generate_uuid("A0B1C2D3E4F5-fan") != generate_uuid("A0B1C2D3E4F5-thermostat")


class TestAccessoryHost:
    def test_aids_start_after_bridge(self):
        host = AccessoryHost()
        first, second = make_switch(uuid="U1"), make_switch(uuid="U2")
        host.register_platform_accessories([first, second])
        assert (first.aid, second.aid) == (2, 3)
        assert host.get_accessory_by_aid(3) is second

    def test_events_broadcast_to_listeners(self):
        host = AccessoryHost()
        accessory = make_switch()
        host.register_platform_accessories([accessory])
        queue = asyncio.Queue()
        host.event_listeners.append(queue)

        accessory.find_characteristic(CHAR_ON).update_value(True)

        message = queue.get_nowait()
        assert message.startswith("data: ")
        event = json.loads(message[len("data: "):])
        assert event['aid'] == 2
        assert event['characteristic'] == "On"
        assert event['value'] is True
        assert host.events_sent == 1

    def test_unregister_stops_events(self):
        host = AccessoryHost()
        accessory = make_switch()
        host.register_platform_accessories([accessory])
        host.unregister_platform_accessories([accessory])
        accessory.find_characteristic(CHAR_ON).update_value(True)
        assert host.events_sent == 0
        assert host.get_accessory(accessory.uuid) is None

    def test_slow_listener_dropped(self):
        host = AccessoryHost()
        queue = asyncio.Queue(maxsize=1)
        host.event_listeners.append(queue)
        host.broadcast_event({'n': 1})
        host.broadcast_event({'n': 2})
        assert host.event_listeners == []

    def test_close_listeners(self):
        host = AccessoryHost()
        queue = asyncio.Queue()
        host.event_listeners.append(queue)
        host.close_listeners()
        assert queue.get_nowait() is None
        assert host.event_listeners == []
