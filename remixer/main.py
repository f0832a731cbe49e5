import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from remixer import config, store
from remixer.database import init_db
from remixer.errors import RangeNotSatisfiableError, RemixerError
from remixer.jobs import JobRegistry
from remixer.routers import audio, tracks

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up %s API", config.APP_NAME)
    init_db()
    store.recover_interrupted()
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    os.makedirs(config.RESULT_DIR, exist_ok=True)
    app.state.owner = store.ensure_owner(config.DEMO_USERNAME)
    app.state.registry = JobRegistry()
    yield
    logger.info("Shutting down %s API", config.APP_NAME)
    await app.state.registry.shutdown()


app = FastAPI(title=config.APP_NAME + " API", lifespan=lifespan)

_origins = (
    [f"https://{config.SERVER_HOSTNAME}"]
    if config.SERVER_HOSTNAME
    else ["http://localhost", "http://localhost:5000", "http://localhost:8000"]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Range"],
    expose_headers=["Content-Range", "Content-Length", "Accept-Ranges", "Content-Disposition"],
)

app.include_router(tracks.router)
app.include_router(audio.router)


@app.exception_handler(RemixerError)
async def remixer_error_handler(request: Request, exc: RemixerError):
    headers = None
    if isinstance(exc, RangeNotSatisfiableError):
        headers = {"Content-Range": f"bytes */{exc.file_size}"}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code, headers=headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


@app.get("/health")
def health():
    return {"ok": True}
