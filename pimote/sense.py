"""
One-shot temperature sense: read an ADS7830 channel over I2C and report it.

Readings that can't be reported are appended to a local newline-delimited
JSON file so they can be submitted later.
"""

import json
import logging
import time
from datetime import datetime

import httpx
from smbus2 import SMBus

logger = logging.getLogger(__name__)

# ADS7830 single-ended command bytes for channels 0-7
CHANNEL_COMMANDS = (0x84, 0xC4, 0x94, 0xD4, 0xA4, 0xE4, 0xB4, 0xF4)
DATE_FORMAT = "%Y-%m-%d-%H:%M:%S"
REQUEST_TIMEOUT = 60.0
SETTLE_TIME = 0.5


def channel_command(channel):
    if not 0 <= channel < len(CHANNEL_COMMANDS):
        raise ValueError(f"Analog input out of bounds [0, {len(CHANNEL_COMMANDS)}): {channel}")
    return CHANNEL_COMMANDS[channel]


def read_channel(channel, bus=1, address=0x4B):
    """Return the raw 0-255 reading of one ADC channel."""
    command = channel_command(channel)
    with SMBus(bus) as i2c:
        i2c.write_byte(address, command)
        time.sleep(SETTLE_TIME)
        return i2c.read_byte(address)


def format_date(moment=None):
    return (moment or datetime.now()).strftime(DATE_FORMAT)


def report_reading(client, base_url, token, date, value):
    url = f"{base_url.rstrip('/')}/sense-temp/{date}/{value}/submit"
    headers = {
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "REQ-TOK": token,
    }
    response = client.get(url, headers=headers)
    response.raise_for_status()
    return response


def record_miss(path, date, value):
    """Append one unreported reading as a JSON line."""
    with open(path, 'a', encoding='utf-8') as f:
        f.write(json.dumps({"date": date, "value": value}) + "\n")


def sense_temperature(sense_settings, channel=0, client=None, reader=read_channel):
    """Read one channel and report it. Returns the reading, or None if the read failed."""
    channel_command(channel)

    try:
        value = reader(channel, bus=sense_settings.bus, address=sense_settings.address)
    except OSError as e:
        logger.error(f"Failed to read channel {channel} from I2C device {sense_settings.address:#x}: {e}")
        return None

    date = format_date()
    logger.info(f"Registering at {date} ({value}/255)")

    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=REQUEST_TIMEOUT)
    try:
        response = report_reading(client, sense_settings.url, sense_settings.token, date, value)
        logger.info(f"[{response.status_code}] {response.text}")
    except httpx.HTTPError as e:
        logger.warning(f"Failed to report reading, writing to {sense_settings.misses_file}: {e}")
        try:
            record_miss(sense_settings.misses_file, date, value)
        except OSError as write_error:
            logger.error(f"Failed to write reading to {sense_settings.misses_file}: {write_error}")
    finally:
        if own_client:
            client.close()
    return value
