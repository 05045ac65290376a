import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from formrelay.config import (
    ALLOWED_METHODS,
    ALLOWED_ORIGINS,
    APP_NAME,
    SERVICE_NAME,
    VERSION,
    get_settings,
)
from formrelay.routers import submissions
from formrelay.services.email import MailDispatcher

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("formrelay")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "Environment variables check: %s",
        {
            "has_email_user": bool(os.getenv("EMAIL_USER")),
            "has_email_pass": bool(os.getenv("EMAIL_PASS")),
            "has_career_user": bool(os.getenv("CAREER_USER")),
            "has_career_pass": bool(os.getenv("CAREER_PASS")),
            "environment": settings.environment,
        },
    )

    app.state.dispatcher = MailDispatcher.from_env()

    # The mailbox check is advisory: serving starts without waiting for it.
    check = None
    if settings.verify_mail_on_startup:
        check = asyncio.create_task(app.state.dispatcher.verify_all())
    logger.info("CORS enabled for: %s", ", ".join(ALLOWED_ORIGINS))
    yield
    if check is not None and not check.done():
        check.cancel()


app = FastAPI(title=APP_NAME, version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(ALLOWED_ORIGINS),
    allow_credentials=True,
    allow_methods=list(ALLOWED_METHODS),
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            status_code,
            (time.perf_counter() - started) * 1000,
        )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unknown paths and unsupported methods on known paths are both "not found".
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content={"success": False, "message": "Route not found"})
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    content = {"success": False, "message": "Internal server error"}
    if not get_settings().is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/")
def index():
    return {
        "message": f"{APP_NAME} is running successfully",
        "timestamp": _now(),
        "version": VERSION,
    }


@app.get("/health")
def health():
    return {
        "status": "OK",
        "service": SERVICE_NAME,
        "time": _now(),
        "environment": get_settings().environment,
    }


app.include_router(submissions.router)


def run():
    settings = get_settings()
    logger.info("%s running on port %s (%s)", APP_NAME, settings.port, settings.environment)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
