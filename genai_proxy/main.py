"""FastAPI application for the GenAI key-rotation proxy."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from starlette.responses import Response

from genai_proxy.admin import admin_router
from genai_proxy.config import Config, load_config
from genai_proxy.errors import ProxyError
from genai_proxy.key_manager import KeyRotationTable
from genai_proxy.proxy import proxy_request
from genai_proxy.routing import resolve_base_url

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def create_http_client(config: Config) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            config.read_timeout_seconds,
            connect=config.connect_timeout_seconds,
            write=config.write_timeout_seconds,
        ),
        limits=httpx.Limits(
            max_keepalive_connections=config.max_keepalive_connections,
            max_connections=config.max_connections,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle: startup and shutdown."""
    config = load_config()

    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))

    http_client = create_http_client(config)

    app.state.config = config
    app.state.http_client = http_client
    app.state.rotation = KeyRotationTable()

    logger.info(
        "GenAI proxy started with %d virtual tokens, upstream %s",
        len(config.keys),
        resolve_base_url(config),
    )

    yield

    await http_client.aclose()
    logger.info("GenAI proxy stopped")


app = FastAPI(title="GenAI Key Rotation Proxy", lifespan=lifespan)

# Include routers BEFORE catch-all route
app.include_router(admin_router)


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError) -> Response:
    return exc.to_response()


@app.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_endpoint(request: Request, path: str):
    """Catch-all proxy endpoint that forwards requests upstream."""
    return await proxy_request(
        request=request,
        rotation=request.app.state.rotation,
        http_client=request.app.state.http_client,
        config=request.app.state.config,
    )
