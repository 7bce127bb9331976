from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .errors import ServiceError
from .routes_content import router as content_router
from .routes_integrations import router as integrations_router
from .routes_media import router as media_router
from .routes_publish import router as publish_router
from .routes_realtime import router as realtime_router
from .routes_scheduler import router as scheduler_router
from .settings import get_settings

logger = logging.getLogger("postcraft")

app = FastAPI(title="postcraft")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(content_router)
app.include_router(publish_router)
app.include_router(integrations_router)
app.include_router(media_router)
app.include_router(realtime_router)
app.include_router(scheduler_router)
app.mount("/generated-audio", StaticFiles(directory=settings.media_dir, check_dir=False), name="generated-audio")


@app.on_event("startup")
async def startup_event():
    """Start scheduler on app startup."""
    from postcraft.services.scheduler import scheduler_service
    scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop scheduler and drain background chains on shutdown."""
    from postcraft.services.scheduler import scheduler_service
    from postcraft.services.task_supervisor import get_supervisor

    scheduler_service.stop()
    await get_supervisor().shutdown()
    logger.info("Scheduler stopped, background tasks drained")
