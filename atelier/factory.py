"""
Builds the Atelier FastAPI app.

Startup order matters: tables first, then tools, because the tool modules
read flags and settings at import time. Shutdown lets in-flight agent runs
finish saving their turns before the DB engine goes away.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import router
from .core.config import Settings, get_settings
from .core.database import close_db, init_db
from .core.flags import get_flags
from .core.redis import close_redis

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # Every model call would otherwise log its full request line
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def startup(settings: Settings):
    from .tools.registry import init_tools

    configure_logging(settings)
    await init_db()
    registry = init_tools()

    flags = get_flags()
    logger.info(
        "Atelier up (env=%s provider=%s auth=%s s3=%s redis=%s thinking=%s)",
        settings.env, flags.llm_provider, flags.use_auth0, flags.use_s3,
        flags.use_redis, flags.expose_thinking,
    )
    logger.info("%d tools: %s", len(registry.names()), ", ".join(registry.names()))


async def shutdown():
    from .services.chat import wait_for_runs
    from .services.llm import close_client

    await wait_for_runs()
    await close_client()
    await close_db()
    await close_redis()
    logger.info("Atelier stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup(get_settings())
    yield
    await shutdown()


def create_app() -> FastAPI:
    settings = get_settings()
    dev = settings.env == "development"

    app = FastAPI(
        title="Atelier",
        description="Image agent for fashion marketing",
        version="1.0.0",
        docs_url="/docs" if dev else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.include_router(router)
    return app
