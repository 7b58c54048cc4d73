"""Switchboard server entry point.

Usage:
    python -m switchboard [--config CONFIG_PATH] [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from .config import ServerConfig
from .server import ControlServer


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Switchboard command server")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.json",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Listen address (overrides config and SWITCHBOARD_HOST)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Listen port (overrides config and SWITCHBOARD_PORT)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    # Logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log = logging.getLogger(__name__)

    # Load config: file < environment < command line
    try:
        config = ServerConfig.load(args.config) if args.config else ServerConfig()
        config.apply_env()
        if args.host:
            config.host = args.host
        if args.port is not None:
            config.port = args.port
        config.__post_init__()
    except ValueError as exc:
        parser.error(str(exc))

    server = ControlServer(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    main_task = loop.create_task(server.run())

    def _shutdown(sig: int) -> None:
        log.info("Received signal %d, shutting down", sig)
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(main_task)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    except OSError as exc:
        log.error("Cannot listen on %s:%d: %s", config.host, config.port, exc)
        raise SystemExit(1) from exc
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
