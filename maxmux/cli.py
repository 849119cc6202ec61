"""Command-line entry point: resolve configuration, then serve."""

import argparse
import os
import sys

import uvicorn

from maxmux.config.settings import CONFIG_PATH_ENV, get_settings
from maxmux.errors import ConfigurationError


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="maxmux",
        description="Reverse proxy that swaps per-client virtual keys for one shared credential",
    )
    parser.add_argument("--config", help="path to YAML config file (default: config.yaml)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="log level (default: info)",
    )
    parser.add_argument("--host", help="interface to bind")
    parser.add_argument("--port", type=int, help="port to listen on (default: 4000)")
    args = parser.parse_args(argv)

    # Flags override the config file through the environment source.
    if args.config:
        os.environ[CONFIG_PATH_ENV] = args.config
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    if args.host:
        os.environ["HOST"] = args.host
    if args.port is not None:
        os.environ["PORT"] = str(args.port)
    get_settings.cache_clear()

    # Validate before binding: a bad config must never open the port.
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        print(f"maxmux: {exc}", file=sys.stderr)
        sys.exit(1)

    from maxmux.main import app

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
