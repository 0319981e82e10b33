import json

import pytest

from airstage_local.__main__ import build_config, build_parser, uvicorn_log_config
from airstage_local.exceptions import ConfigurationError


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestBuildConfig:
    def test_single_device_from_flags(self):
        config = build_config(parse("--ip", "192.168.1.50", "--device-id", "a0:b1:c2:d3:e4:f5",
                                    "--name", "Living Room", "--poll-interval", "30"))
        device = config.devices[0]
        assert device.device_id == "A0B1C2D3E4F5"
        assert device.name == "Living Room"
        assert device.poll_interval == 30
        assert config.enabled_suffixes() == ['thermostat', 'fan']

    def test_enable_flags_override(self):
        config = build_config(parse("--ip", "192.168.1.50", "--no-enable-fan", "--enable-economy-switch"))
        assert config.enabled_suffixes() == ['thermostat', 'economy']

    def test_config_file_plus_flags(self, tmp_path):
        path = tmp_path / "airstage.json"
        path.write_text(json.dumps({
            'devices': [{'ip_address': '192.168.1.51', 'name': 'Bedroom'}],
            'enable_powerful_switch': True,
        }))
        config = build_config(parse("--config", str(path), "--ip", "192.168.1.50"))
        assert [d.ip_address for d in config.devices] == ['192.168.1.51', '192.168.1.50']
        assert 'powerful' in config.enabled_suffixes()

    def test_only_invalid_devices_still_builds(self, tmp_path):
        path = tmp_path / 'airstage.json'
        path.write_text(json.dumps({'devices': [{'ip_address': '192.168.1.51', 'device_id': 'bad'}]}))
        config = build_config(parse("--config", str(path)))
        assert config.devices == []
        assert len(config.rejected_devices) == 1

    def test_no_devices(self):
        with pytest.raises(ConfigurationError, match="No devices"):
            build_config(parse())

    def test_invalid_ip(self):
        with pytest.raises(ConfigurationError, match="Invalid device arguments"):
            build_config(parse("--ip", "not-an-ip"))


class TestParser:
    def test_defaults(self):
        args = parse()
        assert args.port == 4408
        assert args.state == "~/.airstage-local.db"
        assert args.enable_fan is None

    def test_log_config_modes(self):
        assert uvicorn_log_config(parse("--syslog", "local0"))["loggers"]["uvicorn"]["propagate"] is True
        assert "asctime" in uvicorn_log_config(parse())["formatters"]["default"]["format"]
