#!/usr/bin/env python3
"""
Pimote - remote relay switch for the Raspberry Pi

Command-line interface for Pimote.

Usage:
    python3 -m pimote --mode socket [--settings settings.json]
    python3 -m pimote --mode mqtt [--settings settings.json] [--gpio-disabled]
    python3 -m pimote --mode temp [--channel 0]
"""

import argparse
import logging
import logging.handlers
import os
import sys

from .config import MODES, SettingsError, load_settings

logger = logging.getLogger("pimote")


def setup_logging():
    """Configure logging from the environment; file logging is off by default to spare the SD card."""
    logging_handlers = [logging.StreamHandler(sys.stdout)]

    log_level = os.environ.get('PIMOTE_LOG_LEVEL', 'INFO').upper()
    if log_level not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
        log_level = 'INFO'

    # Set PIMOTE_ENABLE_FILE_LOGGING=1 to enable file logging with rotation
    enable_file_logging = os.environ.get('PIMOTE_ENABLE_FILE_LOGGING', '0').lower() in ['1', 'true', 'yes']
    file_logging_error = None
    if enable_file_logging:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                'pimote.log',
                maxBytes=10*1024*1024,  # 10MB per file
                backupCount=3,          # Keep 3 old files (30MB total max)
                encoding='utf-8'
            )
            logging_handlers.append(file_handler)
        except OSError as e:
            file_logging_error = e

    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=logging_handlers
    )

    if file_logging_error is not None:
        logger.warning(f"Cannot create rotating log file 'pimote.log': {file_logging_error}, console logging only")
    elif enable_file_logging:
        logger.info(f"Logging configured at {log_level} level with file rotation enabled")
    else:
        logger.info(f"Logging configured at {log_level} level (console only)")


def build_parser():
    parser = argparse.ArgumentParser(prog='pimote', description='Pimote - remote relay switch')
    parser.add_argument('--mode', choices=MODES, required=True,
                        help='socket server, MQTT device, or one-shot temperature report')
    parser.add_argument('--settings', type=str, default='settings.json',
                        help='Path to settings file (default: settings.json)')
    parser.add_argument('--channel', type=int, default=0,
                        help='ADC channel for temp mode, 0-7 (default: 0)')
    parser.add_argument('--gpio-disabled', action='store_true',
                        help='Run without touching GPIO (test mode)')
    return parser


def main(argv=None):
    """Main function to start Pimote."""
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        settings = load_settings(args.settings, args.mode, gpio_disabled=args.gpio_disabled)
    except SettingsError as e:
        logger.error(f"Invalid settings: {e}")
        return 1

    # Import here so only the selected mode's dependencies are needed
    if args.mode == "temp":
        from .sense import sense_temperature
        try:
            value = sense_temperature(settings.sense, channel=args.channel)
        except ValueError as e:
            logger.error(str(e))
            return 1
        return 0 if value is not None else 1

    from .base import install_signal_handlers
    if args.mode == "socket":
        from .server import SocketRelay
        controller = SocketRelay(settings)
    else:
        from .remote import MqttRelay
        controller = MqttRelay(settings)

    install_signal_handlers(controller)
    controller.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
