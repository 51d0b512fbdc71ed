import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend import PunchStore, RoomError, RoomStore
from constants import Settings
from logging_config import get_logger
from public_ip import PublicIpResolver, fetch_public_ip
from reaper import Reaper
from routers.downloads import downloads_router
from routers.health import health_router
from routers.rooms import rooms_router
from schemas.rooms import ErrorResponse
from udp_punch import PunchHandler, start_udp_server

logger = get_logger(__name__)

HTTP_ERROR_TAGS = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error).model_dump(),
                        headers={"Cache-Control": "no-store"})


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(RoomError)
    async def room_error_handler(request: Request, exc: RoomError):
        return error_response(exc.status_code, exc.error)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else ""
        # Starlette's own 404/405 carry human-readable details, not tags
        if not detail or " " in detail:
            detail = HTTP_ERROR_TAGS.get(exc.status_code, "error")
        return error_response(exc.status_code, detail)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.debug(f"Invalid request body for {request.method} {request.url.path}: {exc.errors()}")
        return error_response(400, "invalid_request")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return error_response(500, "internal_error")


def create_app(
    settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.time,
    resolver: Optional[PublicIpResolver] = None,
    serve_udp: bool = True,
) -> FastAPI:
    settings = settings or Settings()
    rooms = RoomStore(settings.default_ttl_seconds, settings.max_ttl_seconds, clock=clock)
    punches = PunchStore(settings.punch_ttl_seconds, clock=clock)
    if resolver is None:
        resolver = PublicIpResolver(lambda: fetch_public_ip(settings.public_ip_url, settings.public_ip_timeout))
    reaper = Reaper(rooms, punches)
    punch_handler = PunchHandler(rooms, punches, log_connections=settings.log_connections)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transport = None
        reaper.start()
        if serve_udp:
            transport, _ = await start_udp_server(punch_handler, settings.host, settings.effective_udp_port)
        logger.info(f"Room server listening on http://{settings.host}:{settings.port}")
        if settings.api_key:
            logger.info("Legacy room endpoints require header X-API-Key")
        try:
            yield
        finally:
            if transport is not None:
                transport.close()
                logger.info("UDP punch helper closed")
            await reaper.stop()

    app = FastAPI(title="snes-online room server", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.rooms = rooms
    app.state.punches = punches
    app.state.resolver = resolver
    app.state.reaper = reaper
    app.state.punch_handler = punch_handler

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(rooms_router)
    app.include_router(downloads_router)

    logger.info("FastAPI application initialized")
    return app

