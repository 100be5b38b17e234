"""CLI entry point: python main.py serve [--memory] [--port 3000]"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from chatflux.api.app import create_app
from chatflux.errors.exceptions import FatalStartupError
from chatflux.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from chatflux.runtime import ChatFluxRuntime
from chatflux.settings import get_settings

logger = logging.getLogger("chatflux.main")


async def serve(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.memory:
        runtime = ChatFluxRuntime.in_memory(settings)
    else:
        runtime = ChatFluxRuntime.from_settings(settings)

    try:
        await runtime.start()
    except FatalStartupError as e:
        logger.error("Startup failed: %s", e.message)
        await runtime.stop()
        return 1

    app = create_app(runtime, settings)
    config = uvicorn.Config(
        app,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_config=None,
    )
    try:
        await uvicorn.Server(config).serve()
    finally:
        await runtime.stop()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="ChatFlux - chat message distribution and durability pipeline"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the pipeline and the read API")
    serve_parser.add_argument(
        "--memory", action="store_true",
        help="Use in-process adapters instead of Redis, Kafka and the database"
    )
    serve_parser.add_argument("--host", default=None, help="Bind address (default: settings)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: settings)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(LoggingConfig(
        level=LogLevel(settings.log_level.upper()),
        format=LogFormat(settings.log_format.lower()),
    ))

    sys.exit(asyncio.run(serve(args)))


if __name__ == "__main__":
    main()
