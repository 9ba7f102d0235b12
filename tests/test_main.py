import json
from unittest.mock import patch

import pytest

from pimote.__main__ import build_parser, main


@pytest.fixture
def settings_file(tmp_path, raw_settings):
    def _write(raw=None):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps(raw_settings if raw is None else raw))
        return str(path)
    return _write


def test_parser_requires_known_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--mode", "http"])


def test_missing_settings_file_exits_before_main_loop(tmp_path):
    with patch("pimote.remote.MqttRelay") as relay_cls:
        assert main(["--mode", "mqtt", "--settings", str(tmp_path / "missing.json")]) == 1
    relay_cls.assert_not_called()


def test_missing_required_value_exits_before_main_loop(settings_file, raw_settings):
    raw_settings["device"]["key"] = ""
    path = settings_file(raw_settings)
    with patch("pimote.remote.MqttRelay") as relay_cls:
        assert main(["--mode", "mqtt", "--settings", path]) == 1
    relay_cls.assert_not_called()


@patch("pimote.base.install_signal_handlers")
@patch("pimote.server.SocketRelay")
def test_socket_mode_runs_controller(relay_cls, install_handlers, settings_file):
    assert main(["--mode", "socket", "--settings", settings_file()]) == 0
    settings = relay_cls.call_args[0][0]
    assert settings.mode == "socket"
    install_handlers.assert_called_once_with(relay_cls.return_value)
    relay_cls.return_value.run.assert_called_once()


@patch("pimote.base.install_signal_handlers")
@patch("pimote.remote.MqttRelay")
def test_gpio_disabled_flag(relay_cls, install_handlers, settings_file, raw_settings):
    del raw_settings["gpio"]["pin"]
    path = settings_file(raw_settings)
    assert main(["--mode", "mqtt", "--settings", path, "--gpio-disabled"]) == 0
    assert relay_cls.call_args[0][0].gpio.disabled is True


@pytest.mark.parametrize("result, code", [(42, 0), (None, 1)])
def test_temp_mode_exit_code(settings_file, result, code):
    with patch("pimote.sense.sense_temperature", return_value=result) as sense_temperature:
        assert main(["--mode", "temp", "--settings", settings_file(), "--channel", "3"]) == code
    assert sense_temperature.call_args.kwargs["channel"] == 3


def test_temp_mode_bad_channel(settings_file):
    with patch("pimote.sense.sense_temperature", side_effect=ValueError("out of bounds")):
        assert main(["--mode", "temp", "--settings", settings_file(), "--channel", "9"]) == 1


def test_unreadable_settings_exits_before_main_loop(tmp_path):
    with patch("pimote.server.SocketRelay") as relay_cls:
        assert main(["--mode", "socket", "--settings", str(tmp_path)]) == 1
    relay_cls.assert_not_called()
