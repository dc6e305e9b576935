"""
Application entry point: logging setup, app factory and server startup.
"""
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from config import Settings, load_settings
from context import AppContext
from routes import Routes


def setup_logging(settings: Settings) -> None:
    """Configure structured logging; console always, file when LOG_FILE is set."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(format="%(message)s", level=log_level, handlers=handlers, force=True)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_app(ctx: Optional[AppContext] = None) -> FastAPI:
    if ctx is None:
        settings = load_settings()
        setup_logging(settings)
        ctx = AppContext(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await ctx.open()
        try:
            yield
        finally:
            await ctx.close()

    app = FastAPI(title="Voice Lead Agent", lifespan=lifespan)
    app.state.ctx = ctx
    Routes(app, ctx)
    return app


def main():
    import uvicorn
    settings = load_settings()
    setup_logging(settings)
    logger = structlog.get_logger(__name__)
    logger.info("Starting server", host=settings.host, port=settings.port, domain=settings.domain)
    uvicorn.run(create_app(AppContext(settings)), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
