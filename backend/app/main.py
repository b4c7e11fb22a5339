"""
Candidate Mail Intake API
FastAPI application that imports job candidates from email inboxes.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.db import create_supabase_admin
from app.errors import IntakeError
from app.routers import email_import, resume
from app.services.candidate_store import SupabaseCandidateStore
from app.services.resume_parser import ClaudeResumeParser

# Configure logging to output to console
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Candidate Mail Intake API",
    description="Imports job candidates and resumes from IMAP mailboxes",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes http://localhost:3000 (frontend dev server). Additional
    origins are read from the CORS_ORIGINS environment variable as a
    comma-separated list. Duplicates are removed while preserving order.
    """
    origins = ["http://localhost:3000"]
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        origins.extend(o.strip() for o in cors_env.split(",") if o.strip())
    return list(dict.fromkeys(origins))


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(email_import.router, prefix="/api/email/inbox", tags=["email-import"])
app.include_router(resume.router, prefix="/api/resume", tags=["resume"])


@app.exception_handler(IntakeError)
async def intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: [{exc.code}] {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def create_clients() -> None:
    """
    Build the long-lived clients and store them on app.state.

    A missing or broken configuration leaves that client unset; routes that
    need it answer 503 instead of the whole app failing to start.
    """
    try:
        app.state.candidate_store = SupabaseCandidateStore(create_supabase_admin())
    except Exception as exc:
        logger.warning(f"Record store unavailable: {exc}")
        app.state.candidate_store = None

    if os.getenv("ANTHROPIC_API_KEY"):
        app.state.field_extractor = ClaudeResumeParser()
    else:
        logger.warning("ANTHROPIC_API_KEY not set; resume parsing falls back to basic extraction")
        app.state.field_extractor = None


@app.on_event("shutdown")
async def close_clients() -> None:
    extractor = getattr(app.state, "field_extractor", None)
    if extractor is not None and hasattr(extractor, "close"):
        extractor.close()
    app.state.field_extractor = None
    app.state.candidate_store = None


@app.get("/")
async def root():
    return {"message": "Candidate Mail Intake API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Executes a lightweight query (SELECT 1 row from candidates) to verify that
    the record store can reach the database.  Returns 503 on failure.
    """
    store = getattr(app.state, "candidate_store", None)
    if store is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_URL / SUPABASE_SERVICE_KEY not configured",
        )

    try:
        store.client.table(store.table).select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
