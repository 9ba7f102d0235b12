import json
from unittest.mock import MagicMock

import pytest

from pimote import mqtt as mqtt_module
from pimote.mqtt import MQTTManager


@pytest.fixture
def client_cls(monkeypatch):
    client_cls = MagicMock()
    monkeypatch.setattr(mqtt_module.mqtt, "Client", client_cls)
    return client_cls


@pytest.fixture
def manager(client_cls, make_settings):
    settings = make_settings("mqtt")
    will = ("pimotev3/list/lamp1", {"state": "offline"}, 1, True)
    return MQTTManager(settings.mqtt, "pimote-lamp1", will=will)


def message(topic, payload):
    return MagicMock(topic=topic, payload=payload)


def test_setup_sets_credentials_and_will(manager, client_cls):
    client = client_cls.return_value
    _, kwargs = client_cls.call_args
    assert kwargs["client_id"] == "pimote-lamp1"
    client.username_pw_set.assert_called_once_with("pimote", "secret")
    client.will_set.assert_called_once_with(
        "pimotev3/list/lamp1", json.dumps({"state": "offline"}), qos=1, retain=True
    )


def test_connect_starts_network_loop(manager, client_cls):
    manager.connect()
    client = client_cls.return_value
    client.connect_async.assert_called_once_with("broker.local", 1883, 60)
    client.loop_start.assert_called_once()


def test_successful_connack_sets_connected(manager, client_cls):
    client_cls.return_value.is_connected.return_value = True
    manager._on_connect(None, None, {}, MagicMock(is_failure=False), None)
    assert manager.wait_for_connection(timeout=0)
    assert manager.is_connected()


def test_refused_connack_records_error(manager):
    reason = MagicMock(is_failure=True)
    reason.__str__.return_value = "Not authorized"
    manager._on_connect(None, None, {}, reason, None)
    assert not manager.wait_for_connection(timeout=0)
    assert manager.connect_error == "Not authorized"


def test_disconnect_clears_state_and_notifies(manager):
    callback = MagicMock()
    manager.set_disconnect_callback(callback)
    manager._on_connect(None, None, {}, MagicMock(is_failure=False), None)
    manager._on_disconnect(None, None, None, MagicMock(is_failure=True), None)
    assert not manager.mqtt_connected
    callback.assert_called_once()


def test_json_message_dispatched(manager):
    callback = MagicMock()
    manager.set_message_callback(callback)
    manager._on_message(None, None, message("pimotev3/set/lamp1", b'{"state": true}'))
    callback.assert_called_once_with("pimotev3/set/lamp1", {"state": True})


@pytest.mark.parametrize("payload", [b"{not json", b"", b"   ", b"\xff\xfe"])
def test_malformed_message_dropped(manager, payload):
    callback = MagicMock()
    manager.set_message_callback(callback)
    manager._on_message(None, None, message("pimotev3/set/lamp1", payload))
    callback.assert_not_called()


def test_callback_error_contained(manager):
    manager.set_message_callback(MagicMock(side_effect=KeyError("state")))
    manager._on_message(None, None, message("pimotev3/set/lamp1", b"{}"))


def test_publish_requires_connection(manager, client_cls):
    assert manager.publish("t", {"a": 1}) is False
    client_cls.return_value.publish.assert_not_called()


def test_publish_sends_json(manager, client_cls):
    client = client_cls.return_value
    client.is_connected.return_value = True
    client.publish.return_value = MagicMock(rc=mqtt_module.mqtt.MQTT_ERR_SUCCESS)
    manager._on_connect(None, None, {}, MagicMock(is_failure=False), None)

    assert manager.publish("pimotev3/list/lamp1", {"state": "online"}, retain=True, qos=1) is True
    client.publish.assert_called_once_with(
        "pimotev3/list/lamp1", json.dumps({"state": "online"}), qos=1, retain=True
    )
    client.publish.return_value.wait_for_publish.assert_called_once_with(timeout=1.0)


def test_subscribe_failure_raises(manager, client_cls):
    client_cls.return_value.subscribe.return_value = (mqtt_module.mqtt.MQTT_ERR_NO_CONN, None)
    with pytest.raises(ConnectionError):
        manager.subscribe("pimotev3/set/lamp1")


def test_disconnect_stops_loop(manager, client_cls):
    manager.disconnect()
    client = client_cls.return_value
    client.disconnect.assert_called_once()
    client.loop_stop.assert_called_once()
    assert not manager.is_connected()
