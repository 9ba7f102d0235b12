"""
Pimote - remote relay switch for the Raspberry Pi

Toggles a single relay over a raw TCP socket protocol or over MQTT, and
reports ADC temperature readings to an HTTP endpoint.
"""

__version__ = "3.0.0"
