from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging
import time
import uuid

from api_entities import router as entities_router
from api_events import router as events_router
from api_graphs import router as graphs_router
from api_registries import router as registries_router

from config import CORS_ORIGINS, LOG_LEVEL, SEED_REGISTRIES_ON_STARTUP
from db_sqlite import connect, init_db
from errors import CaseMapError, PersistenceError
from services_registries import seed_registries
from utils.structured_log import structured_log_line

# Configure logging
logging.basicConfig(level=LOG_LEVEL, format="%(message)s")
logger = logging.getLogger("casemap")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the schema and seed the system vocabularies before serving.
    """
    conn = connect()
    try:
        init_db(conn)
        if SEED_REGISTRIES_ON_STARTUP:
            seed_registries(conn)
        logger.info(structured_log_line({"event": "startup", "seeded": SEED_REGISTRIES_ON_STARTUP}))
    finally:
        conn.close()

    yield  # App runs here


app = FastAPI(
    title="CaseMap Backend",
    description="Investigation graph backend: entities, relationships and timeline events.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(graphs_router)
app.include_router(entities_router)
app.include_router(events_router)
app.include_router(registries_router)


@app.middleware("http")
async def request_observability(request: Request, call_next):
    start = time.perf_counter()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id

    response = None
    try:
        response = await call_next(request)
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        status_code = getattr(response, "status_code", 500)

        logger.info(
            structured_log_line(
                {
                    "event": "request",
                    "request_id": request_id,
                    "route": request.url.path,
                    "method": request.method,
                    "status": status_code,
                    "latency_ms": latency_ms,
                }
            )
        )

    response.headers["x-request-id"] = request_id
    return response


# Centralized error handling
@app.exception_handler(CaseMapError)
async def casemap_error_handler(request: Request, exc: CaseMapError):
    """
    Map domain errors onto status codes. Storage failures are logged with
    their stack and reported generically; everything else is returned as is.
    """
    if isinstance(exc, PersistenceError):
        logger.error(
            f"Persistence error on {request.method} {request.url.path}: {exc.message}",
            extra={"method": request.method, "path": request.url.path, "details": exc.details},
            exc_info=exc,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "PersistenceError", "detail": "Internal server error", "retryable": False},
        )

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"HTTP {exc.status_code} error on {request.method} {request.url.path}: {exc.message}",
        extra={"method": request.method, "path": request.url.path, "error": type(exc).__name__},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle request validation errors (422).
    These are client errors, so log at WARNING level.
    """
    logger.warning(
        f"Validation error on {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "errors": exc.errors(),
        },
    )
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions.
    Logs full stack trace but returns sanitized error message to client.
    """
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
        },
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/")
def read_root():
    return {"status": "ok", "message": "CaseMap backend is running"}
