"""
Configuration and settings management for Pimote.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MODES = ("socket", "mqtt", "temp")

# Valid BCM GPIO pins on most Raspberry Pi models
COMMON_GPIO_PINS = list(range(2, 28))
EXTENDED_GPIO_PINS = COMMON_GPIO_PINS + [28, 29, 30, 31]


class SettingsError(Exception):
    """Raised when the settings file is missing, unreadable or incomplete."""


@dataclass(frozen=True)
class MqttSettings:
    user: str = ""
    password: str = ""
    broker: str = ""
    prefix: str = "pimotev3"
    keepalive: int = 60
    connect_timeout: float = 10.0

    @property
    def host(self) -> str:
        return self.broker.rsplit(":", 1)[0]

    @property
    def port(self) -> int:
        if ":" not in self.broker:
            return 1883
        return int(self.broker.rsplit(":", 1)[1])


@dataclass(frozen=True)
class DeviceIdentity:
    name: str = ""
    tag: str = ""
    key: str = ""


@dataclass(frozen=True)
class GpioSettings:
    pin: Optional[int] = None
    disabled: bool = False


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 48952


@dataclass(frozen=True)
class SenseSettings:
    url: str = ""
    token: str = ""
    misses_file: str = "misses.json"
    bus: int = 1
    address: int = 0x4B


@dataclass(frozen=True)
class TimingSettings:
    server_retry_delay: float = 60.0
    restart_delay: float = 15.0
    mqtt_retry_delay: float = 10.0
    poll_interval: float = 0.1
    accept_timeout: float = 1.0
    wait_interval: float = 5.0


@dataclass(frozen=True)
class Settings:
    """Immutable settings, built once at startup and passed down."""
    mode: str
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    device: DeviceIdentity = field(default_factory=DeviceIdentity)
    gpio: GpioSettings = field(default_factory=GpioSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    sense: SenseSettings = field(default_factory=SenseSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)


def _section(raw, name, cls):
    data = raw.get(name, {})
    if not isinstance(data, dict):
        raise SettingsError(f"'{name}' section must be an object")
    known = set(cls.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{name}' section: {sorted(unknown)}")
    try:
        return cls(**{k: v for k, v in data.items() if k in known})
    except TypeError as e:
        raise SettingsError(f"Invalid '{name}' section: {e}") from e


def parse_settings(raw, mode, gpio_disabled=False):
    """Build and validate a Settings object from a decoded settings dict."""
    if mode not in MODES:
        raise SettingsError(f"Unknown mode '{mode}', expected one of {MODES}")
    if not isinstance(raw, dict):
        raise SettingsError("Settings file must contain a JSON object")

    gpio = _section(raw, "gpio", GpioSettings)
    if gpio_disabled and not gpio.disabled:
        gpio = GpioSettings(pin=gpio.pin, disabled=True)

    settings = Settings(
        mode=mode,
        mqtt=_section(raw, "mqtt", MqttSettings),
        device=_section(raw, "device", DeviceIdentity),
        gpio=gpio,
        server=_section(raw, "server", ServerSettings),
        sense=_section(raw, "sense", SenseSettings),
        timing=_section(raw, "timing", TimingSettings),
    )
    validate_settings(settings)
    return settings


def load_settings(settings_path="settings.json", mode="socket", gpio_disabled=False):
    """Load configuration from a JSON file and validate it for the given mode."""
    path = Path(settings_path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise SettingsError(f"Settings file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise SettingsError(f"Error parsing settings file: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e

    settings = parse_settings(raw, mode, gpio_disabled=gpio_disabled)
    logger.info(f"Settings loaded from {path} for {mode} mode")
    return settings


def _require(value, name):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise SettingsError(f"Missing required parameter: '{name}'")


def validate_settings(settings):
    """Validate configuration based on mode."""
    if settings.mode in ("socket", "mqtt"):
        if not settings.gpio.disabled:
            _require(settings.gpio.pin, "gpio.pin")
            _validate_gpio_pin(settings.gpio.pin)

    if settings.mode == "mqtt":
        _require(settings.mqtt.user, "mqtt.user")
        _require(settings.mqtt.password, "mqtt.password")
        _require(settings.mqtt.broker, "mqtt.broker")
        _require(settings.mqtt.prefix, "mqtt.prefix")
        _require(settings.device.name, "device.name")
        _require(settings.device.tag, "device.tag")
        _require(settings.device.key, "device.key")
        try:
            settings.mqtt.port
        except ValueError as e:
            raise SettingsError(f"Invalid broker address '{settings.mqtt.broker}', expected host:port") from e

    if settings.mode == "temp":
        _require(settings.sense.url, "sense.url")
        _require(settings.sense.token, "sense.token")


def _validate_gpio_pin(pin):
    if isinstance(pin, bool) or not isinstance(pin, int):
        raise SettingsError(f"GPIO pin must be an integer: {pin}")
    if pin not in EXTENDED_GPIO_PINS:
        # Warn about unusual pins but don't fail (user might know better)
        logger.warning(f"Unusual GPIO pin {pin} - valid range is typically 2-27 (some models support 28-31)")
    elif pin not in COMMON_GPIO_PINS:
        logger.info(f"Using extended GPIO pin {pin} - ensure your Pi model supports it")
