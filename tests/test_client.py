import pytest

from airstage_local.client import LocalClient
from airstage_local.const import (
    FanSpeed,
    HeatingCoolingState,
    OperationMode,
    TemperatureScale,
    Toggle,
)
from airstage_local.database import PreferenceStore
from airstage_local.exceptions import CodecError, DeviceNotFoundError, DeviceTimeoutError, ProtocolError
from airstage_local.registry import DeviceRecord

DEVICE_ID = "A0B1C2D3E4F5"


class TestEnvelopes:
    @pytest.mark.asyncio
    async def test_get_request_envelope(self, client, transport):
        await client.get_power(DEVICE_ID)

        device_id, endpoint, payload = transport.requests[0]
        assert endpoint == '/GetParam'
        assert payload == {
            'device_id': DEVICE_ID,
            'device_sub_id': 0,
            'req_id': '',
            'modified_by': '',
            'set_level': '03',
            'list': ['iu_onoff'],
        }

    @pytest.mark.asyncio
    async def test_set_request_envelope(self, client, transport):
        await client.set_target_temperature(DEVICE_ID, 22)

        _, endpoint, payload = transport.requests[0]
        assert endpoint == '/SetParam'
        assert payload['set_level'] == '02'
        assert payload['value'] == {'iu_set_tmp': '220'}
        assert 'list' not in payload

    @pytest.mark.asyncio
    async def test_lookup_accepts_any_id_format(self, client, transport):
        assert await client.get_power("a0:b1:c2:d3:e4:f5") == Toggle.ON
        assert client.scheduler_for("a0-b1-c2-d3-e4-f5") is client.scheduler_for(DEVICE_ID)
        assert list(client.schedulers) == [DEVICE_ID]

    @pytest.mark.asyncio
    async def test_unknown_device(self, client, transport):
        with pytest.raises(DeviceNotFoundError):
            await client.get_power("FFFFFFFFFFFF")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_missing_parameter(self, client, transport):
        del transport.values['iu_economy']
        with pytest.raises(ProtocolError, match="iu_economy"):
            await client.get_economy(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_undecodable_value(self, client, transport):
        transport.values['iu_op_mode'] = '7'
        with pytest.raises(CodecError):
            await client.get_operation_mode(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, client, transport):
        transport.error = DeviceTimeoutError("Request timeout (5000ms)", code='TIMEOUT')
        with pytest.raises(DeviceTimeoutError):
            await client.get_power(DEVICE_ID)

    def test_devices_without_io(self, client, transport):
        assert [d.device_id for d in client.get_devices()] == [DEVICE_ID]
        assert client.get_name(DEVICE_ID) == "Living Room"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_get_model(self, client):
        assert await client.get_model(DEVICE_ID) == "AS-ABC"

    @pytest.mark.asyncio
    async def test_batched_read(self, client, transport):
        values = await client.get_parameters(DEVICE_ID, ['iu_onoff', 'iu_op_mode'])
        assert values == {'iu_onoff': '1', 'iu_op_mode': '4'}
        assert len(transport.requests) == 1


class TestTemperatures:
    @pytest.mark.asyncio
    async def test_write_then_read_celsius(self, client, transport):
        applied = await client.set_target_temperature(DEVICE_ID, 22)
        assert applied == 22
        assert await client.get_target_temperature(DEVICE_ID) == 22

    @pytest.mark.asyncio
    async def test_write_fahrenheit(self, client, transport):
        applied = await client.set_target_temperature(DEVICE_ID, 72, TemperatureScale.FAHRENHEIT)
        assert applied == 72
        assert transport.writes() == [{'iu_set_tmp': '220'}]
        assert await client.get_target_temperature(DEVICE_ID, TemperatureScale.FAHRENHEIT) == 72

    @pytest.mark.asyncio
    async def test_write_snaps_to_valid_setpoint(self, client, transport):
        applied = await client.set_target_temperature(DEVICE_ID, 22.3)
        assert applied == 22.5
        assert transport.writes() == [{'iu_set_tmp': '225'}]

    @pytest.mark.asyncio
    async def test_write_clamps_range(self, client, transport):
        assert await client.set_target_temperature(DEVICE_ID, 10) == 16.0
        assert await client.set_target_temperature(DEVICE_ID, 35) == 30.0
        assert transport.writes() == [{'iu_set_tmp': '160'}, {'iu_set_tmp': '300'}]

    @pytest.mark.asyncio
    async def test_indoor_temperature(self, client, transport):
        assert await client.get_indoor_temperature(DEVICE_ID) == pytest.approx(22.22, abs=0.01)
        assert await client.get_indoor_temperature(DEVICE_ID, TemperatureScale.FAHRENHEIT) == 72

    @pytest.mark.asyncio
    async def test_delta(self, client, transport):
        transport.values['iu_indoor_tmp'] = '7700'
        transport.values['iu_set_tmp'] = '220'
        assert await client.get_temperature_delta(DEVICE_ID) == pytest.approx(3.0)


class TestHeatingCoolingState:
    @pytest.mark.asyncio
    async def test_power_off_reads_only_power(self, client, transport):
        transport.values['iu_onoff'] = '0'
        assert await client.get_current_heating_cooling_state(DEVICE_ID) == HeatingCoolingState.OFF
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode,expected", [
        ('1', HeatingCoolingState.COOL),
        ('2', HeatingCoolingState.COOL),
        ('4', HeatingCoolingState.HEAT),
        ('3', HeatingCoolingState.OFF),
    ])
    async def test_fixed_modes(self, client, transport, mode, expected):
        transport.values['iu_op_mode'] = mode
        assert await client.get_current_heating_cooling_state(DEVICE_ID) == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("indoor,target,expected", [
        ('7700', '250', HeatingCoolingState.OFF),
        ('7700', '220', HeatingCoolingState.COOL),
        ('7700', '280', HeatingCoolingState.HEAT),
    ])
    async def test_auto_mode_uses_delta(self, client, transport, indoor, target, expected):
        transport.values.update({'iu_op_mode': '0', 'iu_indoor_tmp': indoor, 'iu_set_tmp': target})
        assert await client.get_current_heating_cooling_state(DEVICE_ID) == expected


class TestCommands:
    @pytest.mark.asyncio
    async def test_power_and_mode(self, client, transport):
        await client.set_power(DEVICE_ID, Toggle.OFF)
        await client.set_operation_mode(DEVICE_ID, OperationMode.COOL)
        assert transport.writes() == [{'iu_onoff': '0'}, {'iu_op_mode': '1'}]
        assert await client.get_power(DEVICE_ID) == Toggle.OFF
        assert await client.get_operation_mode(DEVICE_ID) == OperationMode.COOL

    @pytest.mark.asyncio
    async def test_fan_speed(self, client, transport):
        assert await client.get_fan_speed(DEVICE_ID) == FanSpeed.MEDIUM
        await client.set_fan_speed(DEVICE_ID, FanSpeed.QUIET)
        assert transport.writes() == [{'iu_fan_spd': '2'}]

    @pytest.mark.asyncio
    async def test_airflow_direction_clamped(self, client, transport):
        assert await client.set_airflow_vertical_direction(DEVICE_ID, 9) == 4
        assert transport.writes() == [{'iu_af_dir_vrt': '4'}]
        assert await client.get_airflow_vertical_direction(DEVICE_ID) == 4

    @pytest.mark.asyncio
    async def test_swing(self, client, transport):
        await client.set_airflow_vertical_swing(DEVICE_ID, Toggle.ON)
        assert await client.get_airflow_vertical_swing(DEVICE_ID) == Toggle.ON

    @pytest.mark.asyncio
    @pytest.mark.parametrize("feature,parameter", [
        ('powerful', 'iu_powerful'),
        ('economy', 'iu_economy'),
        ('energy_saving_fan', 'iu_fan_ctrl'),
        ('minimum_heat', 'iu_min_heat'),
    ])
    async def test_feature_toggles(self, client, transport, feature, parameter):
        await getattr(client, f'set_{feature}')(DEVICE_ID, Toggle.ON)
        assert transport.writes() == [{parameter: '1'}]
        assert await getattr(client, f'get_{feature}')(DEVICE_ID) == Toggle.ON

    @pytest.mark.asyncio
    async def test_close_shuts_down_schedulers(self, client):
        await client.get_power(DEVICE_ID)
        await client.close()
        assert client.schedulers[DEVICE_ID].pending == 0


class TestTemperatureScale:
    def test_default_is_celsius(self, client):
        assert client.get_temperature_scale() == TemperatureScale.CELSIUS

    def test_in_memory(self, client):
        client.set_temperature_scale(TemperatureScale.FAHRENHEIT)
        assert client.get_temperature_scale() == TemperatureScale.FAHRENHEIT
        assert client.get_temperature_scale(DEVICE_ID) == TemperatureScale.FAHRENHEIT

    def test_no_devices(self, transport):
        from airstage_local.registry import DeviceRegistry
        assert LocalClient(DeviceRegistry(), transport).get_temperature_scale() == TemperatureScale.CELSIUS

    def test_persisted(self, registry, transport, tmp_path):
        db_path = str(tmp_path / "state.db")
        client = LocalClient(registry, transport, preferences=PreferenceStore(db_path))
        client.set_temperature_scale(TemperatureScale.FAHRENHEIT, DEVICE_ID)

        reopened = LocalClient(registry, transport, preferences=PreferenceStore(db_path))
        assert reopened.get_temperature_scale(DEVICE_ID) == TemperatureScale.FAHRENHEIT

    def test_per_device(self, registry, transport):
        registry.register([DeviceRecord("112233445566", 0, "192.168.1.51", "Bedroom")])
        client = LocalClient(registry, transport)
        client.set_temperature_scale(TemperatureScale.FAHRENHEIT, "112233445566")
        assert client.get_temperature_scale() == TemperatureScale.CELSIUS
        assert client.get_temperature_scale("112233445566") == TemperatureScale.FAHRENHEIT
