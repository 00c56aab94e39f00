"""FastAPI application entrypoint."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import init_db
from .exceptions import ServiceError
from .routers import functions, sync_jobs

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = "Content-Type, Authorization, X-Client-Info, Apikey"
CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Support Desk Functions API",
    description="Mailbox sync jobs, AI classification and draft queues, credential crypto",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _allow_origin(request: Request) -> str:
    if "*" in settings.cors_origins:
        return "*"
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins:
        return origin
    return settings.cors_origins[0] if settings.cors_origins else ""


@app.middleware("http")
async def preflight(request: Request, call_next):
    """Answer every OPTIONS request with 200 JSON and the CORS headers, Origin or not."""
    if request.method == "OPTIONS":
        return JSONResponse(
            status_code=200,
            content={"ok": True},
            headers={
                "Access-Control-Allow-Origin": _allow_origin(request),
                "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
                "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
                "Access-Control-Max-Age": "600",
            },
        )
    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, **exc.details})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(functions.router)
app.include_router(sync_jobs.router)


@app.get("/api/health")
def health():
    return {"status": "ok"}
