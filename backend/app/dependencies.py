"""
FastAPI dependency providers for the long-lived clients.

The clients are built once by the startup hook in app.main and stored on
``app.state``. Routes ask for them through these providers; tests replace
them with ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Request

from app.errors import ExternalServiceError
from app.services.candidate_store import CandidateStore
from app.services.resume_parser import FieldExtractor


def get_candidate_store(request: Request) -> CandidateStore:
    store = getattr(request.app.state, "candidate_store", None)
    if store is None:
        raise ExternalServiceError("Record store is not configured")
    return store


def get_field_extractor(request: Request) -> FieldExtractor:
    extractor = getattr(request.app.state, "field_extractor", None)
    if extractor is None:
        raise ExternalServiceError("AI resume parser is not configured")
    return extractor


def get_optional_field_extractor(request: Request) -> Optional[FieldExtractor]:
    """Like get_field_extractor, but None lets callers fall back to basic extraction."""
    return getattr(request.app.state, "field_extractor", None)
