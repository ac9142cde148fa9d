"""
Course materials backend: Google OAuth login, Drive-backed material folders
gated by department codes, and an audit trail for admins.

Load .env in development only (production uses env vars directly). Add CORS,
error-taxonomy and global exception handlers, optional DB init.
"""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env only in development; production should set env vars directly.
# Must run before config is imported: config validates env at import time.
if os.getenv("ENV", "development").lower() == "development":
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import FRONTEND_URL, SKIP_DB_INIT
from database import Base, engine
from errors import AppError
from auth import router as auth_router
from folders import router as folders_router
from students import router as students_router
from admin import router as admin_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create DB tables if not skipping (production uses Alembic migrations)
if not SKIP_DB_INIT:
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Course Materials Backend",
    description="Faculty Drive folders, department-code access for students, audit log.",
)

# CORS: explicit origin, allow credentials (cookies). Never use "*" with cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Map a service error to its status; the class name tells the client which kind it is."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__, **exc.context},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
    # Let FastAPI handle HTTPException (validation, auth, etc.)
    if isinstance(exc, HTTPException):
        raise exc
    logging.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(folders_router)
app.include_router(students_router)
app.include_router(admin_router)
