import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from models import (
    Channel,
    ConnectionRegistry,
    ExpiryJob,
    NotificationStore,
    PublicationEngine,
    PublishValidationError,
)
from schemas import PublishRequest
from utilities import (
    Settings,
    get_settings,
    make_connected,
    make_error,
    make_sse_frame,
    make_too_many_connections,
    parse_since,
    setup_logging,
)

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.expiry_job.start()
    logger.info("Notification expiry job started (every %ss)", app.state.expiry_job.interval)
    yield
    await app.state.expiry_job.stop()
    closed = await app.state.registry.close_all()
    logger.info("Shutdown: closed %d open streams", closed)


def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=make_error("Invalid request body", details=jsonable_encoder(exc.errors())),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    app = FastAPI(title="Grade notifications", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)

    # Per-app registries
    registry = ConnectionRegistry(max_per_student=settings.max_connections_per_student)
    store = NotificationStore(ttl=timedelta(seconds=settings.missed_ttl_seconds))
    app.state.settings = settings
    app.state.registry = registry
    app.state.store = store
    engine = PublicationEngine(registry, store)
    app.state.engine = engine
    app.state.expiry_job = ExpiryJob(store, interval=settings.ttl_cleanup_interval_seconds)
    app.state.started_at = datetime.now(timezone.utc)

    # -------------- SSE stream --------------

    @app.get("/notifications/stream/{student_id}")
    async def stream_notifications(student_id: str):
        channel = Channel(student_id, queue_size=settings.channel_queue_size)
        if not await registry.register(student_id, channel):
            logger.warning("Rejected stream for %s: connection limit reached", student_id)
            return JSONResponse(
                status_code=429,
                content=make_too_many_connections(registry.max_per_student),
            )
        logger.info("Stream opened for %s", student_id)

        channel.write(make_sse_frame(make_connected(student_id)))
        channel.keepalive_task = asyncio.create_task(
            registry.keepalive(channel, settings.keepalive_interval_seconds)
        )

        async def event_stream() -> AsyncIterator[str]:
            try:
                async for frame in channel.frames():
                    yield frame
            finally:
                logger.info("Stream closed for %s", student_id)
                # runs on client disconnect too; must not be cut short by the cancellation
                await asyncio.shield(registry.deregister(student_id, channel))

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    # -------------- REST endpoints --------------

    @app.post("/grades/publish")
    async def publish_grades(req: PublishRequest):
        try:
            result = await engine.publish(req)
        except PublishValidationError as exc:
            return JSONResponse(status_code=400, content=make_error(str(exc)))
        return {"ok": True, "sent": result.sent, "stored": result.stored}

    @app.get("/notifications/missed/{student_id}")
    async def missed_notifications(student_id: str, since: Optional[str] = None):
        records = await store.query(student_id, parse_since(since))
        return {"notifications": [r.to_dict() for r in records]}

    @app.get("/health")
    async def rest_health():
        uptime_sec = int((datetime.now(timezone.utc) - app.state.started_at).total_seconds())
        return {
            "status": "ok",
            "uptime_sec": uptime_sec,
            "connections": registry.total_count(),
            "students_connected": registry.student_count(),
            "students_with_history": store.student_count(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(app, host=_settings.host, port=_settings.port)
