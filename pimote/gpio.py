"""
GPIO management for Pimote - the relay output pin.
"""

import logging
import threading
import time

logger = logging.getLogger(__name__)


def load_gpio_backend():
    """Import RPi.GPIO. Only called when GPIO is enabled, so dev machines never need it."""
    import RPi.GPIO as GPIO
    return GPIO


class RelayPin:
    """Drives a single relay on one BCM pin with thread safety.

    The relay always starts off. If the GPIO backend can't be loaded or the
    pin can't be set up, the relay keeps running in degraded mode: state is
    tracked in memory but never reaches the hardware.
    """

    def __init__(self, pin, disabled=False, gpio=None):
        self.pin = pin
        self.disabled = disabled
        self.degraded = False
        self._gpio = gpio
        self._state = False
        self._lock = threading.Lock()
        self._released = False

        if self.disabled:
            logger.warning("GPIO disabled - ignoring GPIO controller")
        else:
            self.setup_gpio()

    @property
    def hardware_enabled(self):
        return not (self.disabled or self.degraded)

    def setup_gpio(self):
        """Setup the relay pin as an output, driven low."""
        try:
            if self._gpio is None:
                self._gpio = load_gpio_backend()

            # Suppress GPIO warnings for cleaner output
            self._gpio.setwarnings(False)
            self._gpio.setmode(self._gpio.BCM)
            self._gpio.setup(self.pin, self._gpio.OUT, initial=self._gpio.LOW)
            logger.info(f"Loaded GPIO controller, relay connected to pin {self.pin}")
        except Exception as e:
            # ImportError off-Pi, RuntimeError without permissions
            logger.error(f"Failed to setup GPIO pin {self.pin}, running degraded: {e}")
            self.degraded = True

    @property
    def state(self):
        with self._lock:
            return self._state

    def set_state(self, state):
        """Set the relay and mirror it to the pin. Returns the applied state."""
        state = bool(state)
        with self._lock:
            if self._released:
                logger.warning(f"Relay on pin {self.pin} already released, ignoring {'on' if state else 'off'}")
                return self._state
            if self.hardware_enabled:
                try:
                    self._gpio.output(self.pin, self._gpio.HIGH if state else self._gpio.LOW)
                except Exception as e:
                    logger.error(f"Failed to set relay on pin {self.pin}: {e}")
                    self.degraded = True
            else:
                logger.warning("GPIO DISABLED!")
            self._state = state
            logger.info(f"Relay turned {'on' if state else 'off'}")
            return state

    def blink(self, cycles, interval, stop_event=None):
        """Toggle the relay on/off as a start-up self test, ending off."""
        for i in range(cycles * 2):
            if stop_event is not None and stop_event.is_set():
                break
            state = i % 2 == 0
            logger.info(f"Blinking {'on' if state else 'off'}")
            self.set_state(state)
            if stop_event is not None:
                stop_event.wait(interval)
            else:
                time.sleep(interval)
        if self.state:
            self.set_state(False)

    def cleanup(self):
        """Drive the pin low and release it. Safe to call more than once."""
        with self._lock:
            if self._released:
                return
            self._released = True
            self._state = False
            if not self.hardware_enabled:
                return
            try:
                self._gpio.output(self.pin, self._gpio.LOW)
                self._gpio.cleanup(self.pin)
                logger.info(f"Released GPIO pin {self.pin}")
            except Exception as e:
                logger.error(f"Error releasing GPIO pin {self.pin}: {e}")
