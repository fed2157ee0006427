import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
)
from backend.errors import EngagementError
from backend.logging_setup import setup_logging
from backend.routers import admin, core, scan, student
from database.db import create_tables

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Expogate API")


# -----------------------------
# CORS (web client dev server)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


# -----------------------------
# Startup
# -----------------------------
@app.on_event("startup")
def _startup():
    create_tables()
    logger.info("Database schema ready")


# -----------------------------
# Errors
# -----------------------------
@app.exception_handler(EngagementError)
async def _engagement_error(_request: Request, exc: EngagementError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(core.router)
app.include_router(scan.router)
app.include_router(student.router)
app.include_router(admin.router)
