import argparse
import asyncio
import logging
import socket
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from emphasize.config import Config, load_config
from emphasize.database import create_tables, make_engine, make_session_factory
from emphasize.errors import BindError, ConfigError
from emphasize.gate import PersistenceGate
from emphasize.pipeline import PublicationPipeline
from emphasize.routes.articles import router
from emphasize.source import ContentDirSource
from emphasize.store import NullPublicationStore, SqlPublicationStore
from emphasize.watcher import ContentWatcher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_pipeline(config: Config):
    """
    Wire store, gate and pipeline from the configuration.
    Returns (pipeline, engine); engine is None when persistence is disabled,
    in which case the database is never opened.
    """
    engine = None
    if config.mode.persistence_enabled:
        logger.info(f"Connecting to database: {config.db_url}...")
        engine = make_engine(config.db_url)
        create_tables(engine)
        store = SqlPublicationStore(make_session_factory(engine))
    else:
        store = NullPublicationStore()

    gate = PersistenceGate.from_mode(config.mode, store, timeout=config.store_timeout)
    pipeline = PublicationPipeline(config.mode, gate, store_timeout=config.store_timeout)
    return pipeline, engine


def create_app(config: Config) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- Startup ---
        pipeline, engine = build_pipeline(config)
        pipeline.load_initial_snapshot()

        watcher = ContentWatcher(pipeline, ContentDirSource(config.content_dir), config.sync_interval)
        app.state.pipeline = pipeline
        app.state.watcher = watcher

        logger.info("Starting background content watcher...")
        task = asyncio.create_task(watcher.run())

        yield

        # --- Shutdown ---
        logger.info("Shutting down content watcher...")
        task.cancel()
        if engine is not None:
            engine.dispose()

    app = FastAPI(
        title="emphasize",
        description="Publishes articles with a draft/published lifecycle.",
        version="0.1.0",
        lifespan=lifespan,
        debug=config.debug,
    )
    app.include_router(router)
    return app


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket up front so a taken port fails before serving starts."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindError(host, port, e.strerror or str(e)) from e
    sock.set_inheritable(True)
    return sock


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(prog="emphasize", description="Serve published articles.")
    parser.add_argument("config_file", nargs="?", help="optional YAML config file")
    args = parser.parse_args(argv)

    logger.info("Opening config...")
    try:
        config = load_config(args.config_file)
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 2

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    logger.info(f"Working with: {config}")

    try:
        sock = bind_socket(config.host, config.port)
    except BindError as e:
        logger.critical(str(e))
        return 1

    app = create_app(config)
    server = uvicorn.Server(uvicorn.Config(app, log_config=None))
    logger.info(f"Listening on {config.host}:{config.port}")
    server.run(sockets=[sock])
    return 0


if __name__ == "__main__":
    sys.exit(main())
