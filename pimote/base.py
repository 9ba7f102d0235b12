"""
Base class for Pimote relay controllers with the shared supervisor loop.
"""

import logging
import signal
import threading

from .gpio import RelayPin

logger = logging.getLogger(__name__)

# Global shutdown flag
shutdown_flag = threading.Event()


def install_signal_handlers(controller):
    """Route SIGINT/SIGTERM to the controller's shutdown."""
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        controller.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


class RelayControllerBase:
    """Runs one relay session after another until a stop is requested.

    Subclasses implement `run_session()` (blocking) and `wake()`; each session
    failure is logged, resources are always released, then the supervisor
    waits `restart_delay` seconds before the next attempt.
    """

    mode = None

    def __init__(self, settings, restart_delay, shutdown_event=None, gpio=None):
        self.settings = settings
        self.restart_delay = restart_delay
        self.shutdown_flag = shutdown_event if shutdown_event is not None else shutdown_flag
        self.gpio_backend = gpio
        self.relay = None
        self.restart = True

    def create_relay(self):
        return RelayPin(
            self.settings.gpio.pin,
            disabled=self.settings.gpio.disabled,
            gpio=self.gpio_backend
        )

    def run_session(self):
        raise NotImplementedError

    def wake(self):
        """Interrupt the blocking wait of the current session."""

    def request_stop(self):
        """End the current session and don't start another."""
        logger.warning("Stop requested, will not restart")
        self.restart = False
        self.wake()

    def request_shutdown(self):
        self.restart = False
        self.shutdown_flag.set()
        self.wake()

    def should_restart(self):
        return self.restart and not self.shutdown_flag.is_set()

    def cleanup(self):
        """Release the relay pin."""
        if self.relay is not None:
            self.relay.cleanup()
            self.relay = None

    def log_summary(self):
        logger.info("=== Configuration Summary ===")
        logger.info(f"Mode: {self.mode}")
        if self.settings.gpio.disabled:
            logger.info("GPIO: disabled")
        else:
            logger.info(f"Relay pin: {self.settings.gpio.pin}")
        logger.info("===============================")

    def run(self):
        """Supervisor loop."""
        logger.info(f"Starting Pimote in {self.mode} mode")
        self.log_summary()

        while True:
            try:
                self.run_session()
            except Exception:
                logger.exception(f"Error while running {self.mode} session")
            finally:
                try:
                    self.cleanup()
                except Exception as e:
                    logger.error(f"Error during cleanup: {e}")

            if not self.should_restart():
                break
            logger.info(f"Restarting in {self.restart_delay:g}s")
            if self.shutdown_flag.wait(self.restart_delay):
                break

        logger.info("Pimote stopped")
