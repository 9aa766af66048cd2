"""Taskboard Core FastAPI application with the Socket.IO relay mounted alongside."""
import logging
from datetime import datetime, timezone

import socketio
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import get_settings
from ..database import SessionLocal
from ..errors import TaskboardError
from ..relay import ConnectionRegistry, RealtimeRelay
from .routers import auth, projects, tasks, users, uploads

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("taskboard-core")

settings = get_settings()
logger.info(f"Starting Taskboard Core API ({settings.environment})")

# Create FastAPI app
app = FastAPI(
    title="Taskboard Core API",
    description="Projects, tasks and teams with real-time updates",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, message: str, errors=None, error=None) -> JSONResponse:
    """Build the ``{success: false, message, errors?}`` failure envelope."""
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


@app.middleware("http")
async def limit_request_size(request: Request, call_next):
    """Reject JSON/form bodies above max_request_bytes; uploads have per-file limits."""
    content_type = request.headers.get("content-type", "")
    content_length = request.headers.get("content-length")
    if content_length and not content_type.startswith("multipart/form-data"):
        try:
            too_large = int(content_length) > settings.max_request_bytes
        except ValueError:
            return error_response(400, "Invalid Content-Length header")
        if too_large:
            return error_response(413, "Request body too large")
    return await call_next(request)


@app.exception_handler(TaskboardError)
async def taskboard_error_handler(request: Request, exc: TaskboardError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = "Route not found"
    return error_response(exc.status_code, message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(location),
            "message": error.get("msg", "Invalid value"),
        })
    return error_response(400, "Validation errors", errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response(
        500,
        "Internal server error",
        error=str(exc) if settings.is_development else None,
    )


# Include all business logic routers under /api
app.include_router(auth.router, prefix="/api/auth")
app.include_router(projects.router, prefix="/api/projects")
app.include_router(tasks.router, prefix="/api/tasks")
app.include_router(users.router, prefix="/api/users")
app.include_router(uploads.router, prefix="/api/uploads")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "Taskboard Core API",
        "version": "1.0.0",
        "docs": "/docs",
        "realtime": "/socket.io",
    }


@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


# Real-time relay; uvicorn should serve ``asgi_app`` so both share one port
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=settings.cors_origin_list)
relay = RealtimeRelay(
    sio,
    SessionLocal,
    registry=ConnectionRegistry(),
    enforce_room_access=settings.relay_enforce_room_access,
)
app.state.relay = relay
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


def run():
    """Console entry point."""
    uvicorn.run("taskboard_core.api.main:asgi_app", host=settings.host, port=settings.port)
