import asyncio
import logging
from typing import Optional, Tuple

from . import __version__
from .configuration import ServerConfig
from .core.dispatcher import Dispatcher
from .core.handlers import build_registry
from .core.services import ServerServices
from .framing import FrameReader, FrameWriter, open_stdio_streams

logger = logging.getLogger(__name__)


async def serve_streams(
    config: ServerConfig,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    services: Optional[ServerServices] = None,
) -> None:
    """Serve one connection over an already-open stream pair.

    Services passed in are owned by the caller; otherwise they are created
    here and closed when the connection ends.
    """
    owns_services = services is None
    if services is None:
        services = ServerServices(config)

    registry = build_registry()
    dispatcher = Dispatcher(registry, services, server_version=__version__)
    frame_writer = FrameWriter(writer)
    try:
        await dispatcher.run(FrameReader(reader, config.max_frame_bytes), frame_writer)
    finally:
        await frame_writer.close()
        if owns_services:
            await services.close()


async def serve(
    config: ServerConfig,
    streams: Optional[Tuple[asyncio.StreamReader, asyncio.StreamWriter]] = None,
) -> None:
    """Run the server on stdin/stdout until the client disconnects."""
    if config.repository is not None:
        logger.info(f"Default repository directory: {config.repository}")
    logger.info(
        f"🚀 Starting MCP Forgejo Server {__version__} for {config.forgejo_url} "
        f"(concurrency={config.max_concurrency}, timeout={config.tool_timeout:g}s)"
    )
    if not config.has_token:
        logger.warning("🔑 No credential configured; authenticated tools will answer AuthMissing")

    if streams is None:
        streams = await open_stdio_streams(config.max_frame_bytes)
    reader, writer = streams

    async with ServerServices(config) as services:
        try:
            await serve_streams(config, reader, writer, services=services)
        except (ConnectionError, BrokenPipeError) as e:
            logger.info(f"🔌 Transport closed: {e}")
    logger.info("👋 Server stopped")
