import os
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import RedisBackend, create_redis_client
from constants import CRON_SECRET, DATABASE_URL, SWEEP_INTERVAL_SECONDS
from database import DurableStore
from errors import RoomServiceError, ValidationError
from logging_config import get_logger, setup_logging
from notifier import BroadcastNotifier
from room_service import RoomService
from routers.cron import cron_router
from routers.messages import messages_router
from routers.rooms import rooms_router
from sweeper import ExpirySweeper

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def build_room_service() -> RoomService:
    """Open the Redis pool and, when configured, the durable store."""
    redis_client = create_redis_client()
    durable = None
    executor = None
    if DATABASE_URL:
        durable = DurableStore.from_url(DATABASE_URL)
        durable.create_all()
        # One worker keeps durable writes in the order they were issued
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="durable-writer")
        logger.info("Durable store enabled")
    else:
        logger.info("DATABASE_URL not set, rooms are kept in Redis only")
    return RoomService(
        RedisBackend(redis_client),
        durable=durable,
        notifier=BroadcastNotifier(redis_client),
        executor=executor,
    )


def close_room_service(service: RoomService) -> None:
    if service.executor is not None:
        service.executor.shutdown(wait=True)
    if service.durable is not None:
        service.durable.close()
    service.cache.redis_client.close()
    logger.info("Store connections closed")


def create_app(room_service: Optional[RoomService] = None, cron_secret: str = CRON_SECRET,
               sweep_interval_seconds: int = SWEEP_INTERVAL_SECONDS) -> FastAPI:
    """Build the application. A given ``room_service`` is used as is and left open on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.room_service is None
        if owned:
            app.state.room_service = build_room_service()
        service = app.state.room_service

        sweeper = None
        if service.durable is not None and sweep_interval_seconds > 0:
            sweeper = ExpirySweeper(service.durable, sweep_interval_seconds, clock=service.clock)
            sweeper.start()
        logger.info("Application started")
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            if owned:
                close_room_service(service)
                app.state.room_service = None

    app = FastAPI(title="Ephemeral Chat Rooms", lifespan=lifespan)
    app.state.room_service = room_service
    app.state.cron_secret = cron_secret

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RoomServiceError)
    async def room_service_error_handler(request: Request, exc: RoomServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies and query strings share the 400 validation_error shape
        error = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "request"
        reason = f"Invalid {field}: {error.get('msg', 'malformed request')}"
        return await room_service_error_handler(request, ValidationError(reason))

    @app.get("/health")
    async def health(request: Request):
        service: RoomService = request.app.state.room_service
        return {
            "status": "ok",
            "liveRooms": len(service.cache.list_room_codes()),
            "durableStore": service.durable is not None,
        }

    app.include_router(rooms_router)
    app.include_router(messages_router)
    app.include_router(cron_router)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
