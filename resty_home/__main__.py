#
# Copyright 2025 The RestyHome contributors.
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

"""Command-line interface for Resty Home."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from .cache import DeviceGraphCache
from .graph import DeviceGraph, demo_graph
from .routes import register_routes
from .server import DEFAULT_HOST, DEFAULT_PORT, HTTPServer

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)


def create_graph(args) -> DeviceGraph:
    """Build the device graph provider selected on the command line."""
    if args.demo:
        logger.info("Using built-in demo device graph")
        return demo_graph()

    if not args.pairing_file:
        raise RuntimeError("No device graph configured. Use --pairing-file or --demo.")

    # aiohomekit is only needed for real devices
    from .homekit import HomeKitDeviceGraph
    return HomeKitDeviceGraph.from_pairing_file(Path(args.pairing_file), args.alias)


async def run_server(args):
    """Run the Resty Home server until a shutdown signal arrives."""
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal(signum):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle_signal, signum)
        except NotImplementedError:
            # Windows: rely on KeyboardInterrupt
            pass

    graph = create_graph(args)
    cache = DeviceGraphCache(graph)
    server: Optional[HTTPServer] = None

    try:
        logger.info("Waiting for device graph to load...")
        await graph.load()

        # Eager rebuild after the initial load, then follow change events
        cache.rebuild()
        cache.start()

        server = HTTPServer(args.host, args.port)
        register_routes(server, cache)
        await server.start()

        logger.info("*** Resty Home ready! ***")
        logger.info(f"Homes: {cache.home_count}, accessories: {cache.total_accessory_count}")
        logger.info(f"API Server: http://{args.host}:{server.port}")
        logger.info(f"Health: http://{args.host}:{server.port}/health")
        logger.info(f"Home list: http://{args.host}:{server.port}/homes")

        await shutdown_event.wait()

    finally:
        logger.info("Performing cleanup...")
        if server:
            await server.stop()
        await cache.stop()
        await graph.close()
        logger.info("Cleanup complete")


def configure_logging(args):
    """Configure the root logger for console, daemon or syslog mode."""
    if args.syslog:
        # Network address (host:port) or Unix socket path (e.g. /dev/log)
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'resty-home[%(process)d]: %(levelname)s %(message)s'
            ))

            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            root_logger.handlers = [syslog_handler]

            logger.info("Logging to syslog: %s", args.syslog)
        except Exception as e:
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
        # No timestamp, syslog/journald adds it
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
        description="Resty Home - local REST API for smart-home devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Try the API against a built-in sample home
  resty-home --demo

  # Serve HomeKit accessories paired with aiohomekit
  python -m aiohomekit pair -f ~/.resty-home.json -d 12:34:56:78:9A:BC -p 123-45-678 -a living
  resty-home --pairing-file ~/.resty-home.json

  # Only one pairing from the file, custom port
  resty-home --pairing-file ~/.resty-home.json --alias living --port 8080

  # Run as system daemon, logs to local syslog
  resty-home --pairing-file ~/.resty-home.json --daemon --syslog /dev/log

API Endpoints:
  GET  /health                                  - Health check
  GET  /homes                                   - List all homes
  GET  /homes/{home}/rooms                      - List rooms
  GET  /homes/{home}/accessories                - List accessories
  GET  /homes/{home}/accessories/{id}           - Accessory detail
  POST /homes/{home}/accessories/{id}/set       - Set a characteristic
  GET  /homes/{home}/scenes                     - List scenes
  POST /homes/{home}/scenes/{id}/execute        - Execute a scene
        """
    )
    env_port = os.environ.get("RESTY_HOME_PORT")
    default_port = DEFAULT_PORT
    if env_port:
        try:
            default_port = int(env_port)
        except ValueError:
            parser.error(f"RESTY_HOME_PORT must be a port number, got {env_port!r}")
    parser.add_argument("--port", type=int, default=default_port,
                        help=f"Port for REST API server (default: {default_port})")
    parser.add_argument("--host", default=DEFAULT_HOST,
                        help=f"Loopback address to bind (default: {DEFAULT_HOST})")
    parser.add_argument("--pairing-file",
                        help="aiohomekit pairing file (JSON) with the HomeKit accessories to serve")
    parser.add_argument("--alias",
                        help="Only serve this pairing from the pairing file")
    parser.add_argument("--demo", action="store_true",
                        help="Serve a built-in sample home instead of real devices")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                        help="Run in daemon mode (no timestamps, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                        help="Send logs to syslog instead of stdout (e.g., /dev/log or localhost:514)")
    parser.add_argument("--pid-file",
                        help="Write process ID to specified file (useful for daemon mode)")
    return parser


def main():
    """Main entry point for the CLI."""
    args = build_parser().parse_args()

    # Daemon mode implies PID file if not specified
    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/resty-home.pid" if sys.platform != "win32" else "resty-home.pid"

    configure_logging(args)

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except Exception as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args))
        logger.info("*** Shutdown complete ***")
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)
    finally:
        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except Exception as e:
                logger.warning(f"Failed to remove PID file: {e}")


if __name__ == "__main__":
    main()
