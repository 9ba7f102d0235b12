"""
Pytest configuration and fixtures for Pimote.

Hardware is never touched: relays get a fake RPi.GPIO backend injected, and
settings are built in memory with short timings.
"""

import logging
import sys

import pytest

from pimote.config import parse_settings


class FakeGPIO:
    """Records what a relay does to its pins, shaped like the RPi.GPIO module."""
    BCM = "BCM"
    OUT = "OUT"
    HIGH = 1
    LOW = 0

    def __init__(self, fail_setup=False):
        self.fail_setup = fail_setup
        self.mode = None
        self.pins = {}
        self.writes = []
        self.cleaned = []

    def setwarnings(self, enabled):
        pass

    def setmode(self, mode):
        self.mode = mode

    def setup(self, pin, direction, initial=LOW):
        if self.fail_setup:
            raise RuntimeError("No access to /dev/mem")
        self.pins[pin] = initial

    def output(self, pin, value):
        self.pins[pin] = value
        self.writes.append((pin, value))

    def cleanup(self, pin=None):
        self.cleaned.append(pin)


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Show module logs in failing test output, formatted like the app's."""
    formatter = logging.Formatter(fmt="%(levelname)-8s %(name)s: %(message)s")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture
def fake_gpio():
    return FakeGPIO()


@pytest.fixture
def failing_gpio():
    return FakeGPIO(fail_setup=True)


FAST_TIMING = {
    "server_retry_delay": 0.2,
    "restart_delay": 0.05,
    "mqtt_retry_delay": 0.05,
    "poll_interval": 0.01,
    "accept_timeout": 0.05,
    "wait_interval": 0.02,
}


@pytest.fixture
def raw_settings():
    return {
        "mqtt": {
            "user": "pimote",
            "password": "secret",
            "broker": "broker.local:1883",
            "prefix": "pimotev3",
            "connect_timeout": 0.5,
        },
        "device": {"name": "Lamp", "tag": "lamp1", "key": "open-sesame"},
        "gpio": {"pin": 17},
        "server": {"host": "127.0.0.1", "port": 0},
        "sense": {"url": "http://sense.local:8000", "token": "tok"},
        "timing": dict(FAST_TIMING),
    }


@pytest.fixture
def make_settings(raw_settings):
    def _make(mode, **overrides):
        raw = dict(raw_settings)
        raw.update(overrides)
        return parse_settings(raw, mode)
    return _make
