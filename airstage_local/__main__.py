#
# Copyright 2025 The AirstageLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Command-line interface for Airstage Local."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from .client import LocalClient
from .config import DeviceConfig, PlatformConfig, load_config
from .database import PreferenceStore, ensure_schema_and_migrate
from .exceptions import ConfigurationError
from .homekit import AccessoryHost
from .platform import AirstagePlatform
from .registry import DeviceRegistry
from .routes import create_app, register_routes
from .transport import LocalTransport

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)

# Global variables
platform: Optional[AirstagePlatform] = None
server: Optional[uvicorn.Server] = None
shutdown_event: Optional[asyncio.Event] = None


def build_config(args) -> PlatformConfig:
    """Platform configuration from --config, overridden by command-line flags."""
    if args.config:
        config = load_config(args.config)
    else:
        config = PlatformConfig()

    if args.ip:
        try:
            device = DeviceConfig(
                ip_address=args.ip,
                device_id=args.device_id,
                device_sub_id=args.device_sub_id,
                name=args.name,
                poll_interval=args.poll_interval,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid device arguments: {e}") from e
        config.devices.append(device)

    for flag in ('enable_thermostat', 'enable_fan', 'enable_powerful_switch', 'enable_economy_switch',
                 'enable_energy_saving_fan_switch', 'enable_minimum_heat_mode_switch'):
        value = getattr(args, flag, None)
        if value is not None:
            setattr(config, flag, value)

    if not config.devices and not config.rejected_devices:
        raise ConfigurationError("No devices configured: use --ip or --config")
    return config


def uvicorn_log_config(args) -> dict:
    """uvicorn logging matching the selected logging mode."""
    if args.syslog:
        # Syslog mode: let uvicorn propagate to the root logger
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": dict(formatter),
            "access": dict(formatter),
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "formatter": "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        },
    }


async def run_server(args):
    """Run the Airstage Local server."""
    global platform, server, shutdown_event

    shutdown_event = asyncio.Event()

    def handle_signal(signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

        # Close SSE streams so uvicorn does not wait for them
        if platform:
            platform.host.close_listeners()

        if server:
            server.should_exit = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        config = build_config(args)

        db_path = Path(os.path.expanduser(args.state))
        try:
            ensure_schema_and_migrate(str(db_path))
        except Exception as e:
            logger.error(f"Database migration check failed: {e}")
            raise
        preferences = PreferenceStore(str(db_path))

        registry = DeviceRegistry()
        client = LocalClient(registry, LocalTransport(), preferences)
        platform = AirstagePlatform(config, client, AccessoryHost(), preferences=preferences)

        app = create_app()
        register_routes(app, lambda: platform)

        records = await platform.setup()
        if not records:
            logger.warning("No device passed validation; the API will start without devices")

        logger.info("*** Airstage Local ready! ***")
        for record in records:
            logger.info(f"Device: {record.name} ({record.device_id}) at {record.ip_address}")
        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Documentation: http://0.0.0.0:{args.port}/docs")
        logger.info(f"Status: http://0.0.0.0:{args.port}/status")
        logger.info(f"Live Events: http://0.0.0.0:{args.port}/events")

        uvicorn_config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=uvicorn_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(uvicorn_config)
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down gracefully...")
    except Exception as e:
        logger.error(f"ERROR: Failed to start Airstage Local: {e}")
        raise
    finally:
        if platform:
            logger.info("Performing cleanup...")
            await platform.cleanup()

        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def setup_logging(args):
    """Configure logging for console, daemon or syslog mode."""
    if args.syslog:
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            # Network address (host:port)
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'airstage-local[%(process)d]: %(levelname)s %(message)s'
            ))

            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            root_logger.handlers = [syslog_handler]

            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            # Fall back to console if syslog fails
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # No timestamp, syslog adds it
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Airstage Local - REST API for Fujitsu Airstage air conditioners on the local network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Single unit, device ID auto-detected from the ARP table
  python -m airstage_local --ip 192.168.1.50 --name "Living Room"
  airstage-local --ip 192.168.1.50 --name "Living Room"

  # Explicit device ID, poll every 60 seconds
  airstage-local --ip 192.168.1.50 --device-id A0:B1:C2:D3:E4:F5 --poll-interval 60

  # Several units from a JSON configuration file
  airstage-local --config ~/.airstage-local.json

  # Run as system daemon
  airstage-local --config /etc/airstage-local.json --daemon --pid-file /var/run/airstage-local.pid

  # Send logs to local or remote syslog
  airstage-local --ip 192.168.1.50 --syslog /dev/log
  airstage-local --ip 192.168.1.50 --syslog logserver.local:514

  # Debug mode with verbose logging
  airstage-local --ip 192.168.1.50 --verbose

API Endpoints:
  GET  /                      - API information
  GET  /status                - System status
  GET  /devices               - Registered devices
  GET  /devices/{id}          - Current device state
  POST /devices/{id}/set      - Control a device
  GET  /accessories           - All accessories
  GET  /accessories/{aid}/characteristics/{name} - Read a characteristic
  PUT  /accessories/{aid}/characteristics/{name} - Write a characteristic
  GET  /events                - Server-Sent Events for real-time updates
  POST /refresh               - Refresh all accessories
        """
    )
    parser.add_argument("--ip",
                        help="IP address of the indoor unit's WLAN adapter")
    parser.add_argument("--device-id",
                        help="Device ID (MAC address of the adapter). Auto-detected when omitted.")
    parser.add_argument("--device-sub-id", type=int, default=0,
                        help="Device sub ID (default: 0)")
    parser.add_argument("--name",
                        help="Display name of the unit (default: device ID)")
    parser.add_argument("--poll-interval", type=int, default=120,
                        help="Seconds between polls, 0 disables polling (default: 120)")
    parser.add_argument("--config",
                        help="JSON configuration file with one or more devices")
    parser.add_argument("--state", default="~/.airstage-local.db",
                        help="Path to state database (default: ~/.airstage-local.db)")
    parser.add_argument("--port", type=int, default=4408,
                        help="Port for REST API server (default: 4408)")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                        help="Run in daemon mode (logging without timestamps, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                        help="Send logs to syslog instead of stdout (e.g., /dev/log, localhost:514)")
    parser.add_argument("--pid-file",
                        help="Write process ID to specified file (useful for daemon mode)")

    accessories = parser.add_argument_group("accessories")
    for flag, help_text in (
        ("thermostat", "thermostat accessory (default: on)"),
        ("fan", "fan accessory (default: on)"),
        ("powerful-switch", "powerful mode switch (default: off)"),
        ("economy-switch", "economy mode switch (default: off)"),
        ("energy-saving-fan-switch", "energy saving fan switch (default: off)"),
        ("minimum-heat-mode-switch", "minimum heat mode switch (default: off)"),
    ):
        accessories.add_argument(f"--enable-{flag}", dest=f"enable_{flag.replace('-', '_')}",
                                 action=argparse.BooleanOptionalAction, default=None,
                                 help=f"Publish the {help_text}")
    return parser


def main():
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Daemon mode implies PID file if not specified
    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/airstage-local.pid" if sys.platform != "win32" else "airstage-local.pid"

    setup_logging(args)

    if not args.ip and not args.config:
        parser.error("either --ip or --config is required")

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
