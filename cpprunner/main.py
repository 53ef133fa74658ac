from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route

from .config import RunnerSettings, get_settings
from .models import CompileRunResponse
from .pipeline import Pipeline
from .utils import ensure_scratch_dir

logger = logging.getLogger(__name__)


async def compile_run(request: Request) -> JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)

    if not isinstance(body, dict):
        body = {}

    settings: RunnerSettings = request.app.state.settings
    result = await asyncio.to_thread(Pipeline(settings).run, body.get("code"), body.get("input"))
    return JSONResponse(CompileRunResponse(output=result.output).model_dump())


async def health(request: Request) -> PlainTextResponse:
    return PlainTextResponse("OK")


def create_app(settings: RunnerSettings | None = None) -> Starlette:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        ensure_scratch_dir(settings.scratch_dir)
        logger.info("Scratch directory: %s", settings.scratch_dir)
        yield

    routes = [
        Route("/compile", compile_run, methods=["POST"]),
        Route("/health", health, methods=["GET"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        ),
    ]
    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.settings = settings
    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )
    logger.info("Listening on port %d", settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
