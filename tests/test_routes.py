import pytest
from fastapi.testclient import TestClient

from airstage_local import routes
from airstage_local.config import PlatformConfig
from airstage_local.exceptions import DeviceTimeoutError
from airstage_local.homekit import AccessoryHost
from airstage_local.platform import AirstagePlatform

DEVICE_ID = "A0B1C2D3E4F5"


@pytest.fixture
def platform(client, record):
    platform = AirstagePlatform(PlatformConfig(), client, AccessoryHost())
    platform.poll_intervals[DEVICE_ID] = 0
    platform.register_accessory(record, 'thermostat')
    platform.register_accessory(record, 'fan')
    return platform


@pytest.fixture
def api(platform):
    app = routes.create_app()
    routes.register_routes(app, lambda: platform)
    with TestClient(app) as test_client:
        yield test_client


class TestInfo:
    def test_root(self, api):
        response = api.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "Airstage Local"

    def test_status(self, api):
        data = api.get("/status").json()
        assert data["status"] == "running"
        assert data["devices"] == 1
        assert data["accessories"] == 2

    def test_platform_not_ready(self):
        app = routes.create_app()
        routes.register_routes(app, lambda: None)
        with TestClient(app) as test_client:
            assert test_client.get("/status").status_code == 503


class TestDevices:
    def test_list(self, api):
        devices = api.get("/devices").json()["devices"]
        assert len(devices) == 1
        assert devices[0]["device_id"] == DEVICE_ID
        assert devices[0]["temperature_scale"] == "C"
        assert devices[0]["accessories"] == [2, 3]

    def test_state(self, api, transport):
        response = api.get("/devices/a0:b1:c2:d3:e4:f5")
        assert response.status_code == 200
        state = response.json()["state"]
        assert state["power"] == "on"
        assert state["mode"] == "heat"
        assert state["target_temp_c"] == 22.0
        assert state["cur_temp_c"] == pytest.approx(22.22)
        assert state["fan_speed"] == "medium"
        assert state["model"] == "AS-ABC"
        # All parameters in a single request
        assert len(transport.requests) == 1

    def test_undecodable_value_is_null(self, api, transport):
        transport.values["iu_op_mode"] = "9"
        assert api.get(f"/devices/{DEVICE_ID}").json()["state"]["mode"] is None

    def test_unknown_device(self, api):
        response = api.get("/devices/FFFFFFFFFFFF")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    def test_unreachable_device(self, api, transport):
        transport.error = DeviceTimeoutError("Request timeout (5000ms) for Living Room", code="TIMEOUT")
        response = api.get(f"/devices/{DEVICE_ID}")
        assert response.status_code == 503
        assert "timeout" in response.json()["detail"]

    def test_set(self, api, transport):
        response = api.post(f"/devices/{DEVICE_ID}/set", params={"power": "on", "temperature": 22.3, "fan_speed": "high"})
        assert response.status_code == 200
        data = response.json()
        assert data["applied"] == {"power": "on", "temperature": 22.5, "scale": "C", "fan_speed": "high"}
        assert {'iu_set_tmp': '225'} in transport.writes()
        assert {'iu_fan_spd': '11'} in transport.writes()

    def test_set_fahrenheit(self, api, transport):
        response = api.post(f"/devices/{DEVICE_ID}/set", params={"temperature": 72, "scale": "F"})
        assert response.json()["applied"]["temperature"] == 72
        assert transport.writes() == [{'iu_set_tmp': '220'}]

    def test_set_without_parameters(self, api):
        assert api.post(f"/devices/{DEVICE_ID}/set").status_code == 400

    def test_set_invalid_mode(self, api):
        assert api.post(f"/devices/{DEVICE_ID}/set", params={"mode": "turbo"}).status_code == 422


class TestAccessories:
    def test_list(self, api):
        accessories = api.get("/accessories").json()["accessories"]
        assert [a["display_name"] for a in accessories] == ["Living Room Thermostat", "Living Room Fan"]

    def test_unknown_accessory(self, api):
        assert api.get("/accessories/99").status_code == 404

    def test_read_characteristic(self, api):
        response = api.get("/accessories/2/characteristics/TargetTemperature")
        assert response.status_code == 200
        assert response.json()["value"] == 22.0

    def test_write_characteristic(self, api, transport):
        response = api.put("/accessories/2/characteristics/TargetTemperature", json={"value": 22.3})
        assert response.status_code == 200
        assert response.json()["value"] == 22.5
        assert transport.writes() == [{'iu_set_tmp': '225'}]

    def test_write_read_only(self, api):
        response = api.put("/accessories/2/characteristics/CurrentTemperature", json={"value": 20})
        assert response.status_code == 400

    def test_write_out_of_range(self, api):
        response = api.put("/accessories/3/characteristics/RotationSpeed", json={"value": 150})
        assert response.status_code == 400

    def test_unknown_characteristic(self, api):
        assert api.get("/accessories/2/characteristics/Brightness").status_code == 404

    def test_refresh(self, api):
        data = api.post("/refresh").json()
        assert data["notifications"] == {DEVICE_ID: 10}


class TestAuthentication:
    def test_disabled_by_default(self, api, monkeypatch):
        monkeypatch.setattr(routes, 'API_KEYS', set())
        assert api.get("/status").status_code == 200

    def test_missing_key(self, api, monkeypatch):
        monkeypatch.setattr(routes, 'API_KEYS', {'secret'})
        assert api.get("/status").status_code == 401

    def test_wrong_key(self, api, monkeypatch):
        monkeypatch.setattr(routes, 'API_KEYS', {'secret'})
        response = api.get("/status", headers={"Authorization": "Bearer guess"})
        assert response.status_code == 401

    def test_valid_key(self, api, monkeypatch):
        monkeypatch.setattr(routes, 'API_KEYS', {'secret'})
        response = api.get("/status", headers={"Authorization": "Bearer secret"})
        assert response.status_code == 200
