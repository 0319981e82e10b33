import pytest

from airstage_local.client import LocalClient
from airstage_local.const import ENDPOINT_GET_PARAM, ENDPOINT_SET_PARAM
from airstage_local.registry import DeviceRecord, DeviceRegistry
from airstage_local.scheduler import RequestScheduler

DEVICE_ID = "A0B1C2D3E4F5"


class FakeTransport:
    """In-memory indoor unit answering GetParam/SetParam requests."""

    def __init__(self, values=None):
        self.values = dict(values or {})
        self.requests = []
        self.read_errors = {}
        self.error = None

    async def send(self, device, endpoint, payload):
        self.requests.append((device.device_id, endpoint, payload))
        if self.error is not None:
            raise self.error
        if endpoint == ENDPOINT_GET_PARAM:
            for name in payload["list"]:
                if name in self.read_errors:
                    raise self.read_errors[name]
            return {name: self.values[name] for name in payload["list"] if name in self.values}
        assert endpoint == ENDPOINT_SET_PARAM
        self.values.update(payload["value"])
        return {}

    async def probe(self, ip_address):
        if self.error is not None:
            raise self.error
        return 200

    def writes(self):
        return [payload["value"] for _, endpoint, payload in self.requests if endpoint == ENDPOINT_SET_PARAM]


@pytest.fixture
def record():
    return DeviceRecord(device_id=DEVICE_ID, device_sub_id=0, ip_address="192.168.1.50", name="Living Room")


@pytest.fixture
def registry(record):
    registry = DeviceRegistry()
    registry.register([record])
    return registry


@pytest.fixture
def transport():
    return FakeTransport({
        "iu_onoff": "1",
        "iu_op_mode": "4",
        "iu_set_tmp": "220",
        "iu_indoor_tmp": "7200",
        "iu_fan_spd": "8",
        "iu_af_swg_vrt": "0",
        "iu_af_dir_vrt": "2",
        "iu_powerful": "0",
        "iu_economy": "0",
        "iu_fan_ctrl": "0",
        "iu_min_heat": "0",
        "iu_model": "AS-ABC",
    })


@pytest.fixture
def client(registry, transport):
    return LocalClient(registry, transport, scheduler_factory=lambda: RequestScheduler(request_delay=0))
