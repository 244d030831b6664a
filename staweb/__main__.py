"""Serve a SensorThings service with WebSub topic discovery."""

import argparse
import logging
import sys

from . import sensorthings, websub
from .framework import load_config

__all__ = ["build", "main"]


def build(settings):
    """Return the in-memory service for `settings`, WebSub installed."""
    registry = sensorthings.EntityTypes.from_settings(settings)
    app = sensorthings.service(registry, settings.get("serviceRootUrl", ""))
    websub.install(app, settings, registry)
    return app


def main(argv=None):
    parser = argparse.ArgumentParser(prog="staweb", description=__doc__)
    commands = parser.add_subparsers(dest="command")
    commands.required = True
    serve = commands.add_parser("serve", help="serve the in-memory service")
    serve.add_argument("--config", help="JSON settings file (or $STACFG)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    serve.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(asctime)s %(name)s %(levelname)s "
                               "%(message)s")
    settings = load_config(args.config)
    try:
        app = build(settings)
    except websub.ConfigurationError as err:
        parser.exit(2, f"staweb: {err}\n")
    try:
        app.serve(args.port, args.host)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
