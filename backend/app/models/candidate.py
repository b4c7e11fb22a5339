"""
Pydantic models for candidate records.

The record store owns CandidateRecord; this service only builds records and
hands them to the store. Database rows are snake_case, the API is camelCase
(see CamelModel).
"""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from app.models.base import CamelModel


class ImportMethod(str, Enum):
    """How much of a record came from automated extraction."""

    AI_PARSER = "ai_parser"
    BASIC_EXTRACTION = "basic_extraction"
    MANUAL = "manual"


class HistoryEntry(CamelModel):
    date: str
    note: str


class HeaderIdentity(CamelModel):
    """Identity derived from the message headers alone."""

    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None


class ResumeFields(CamelModel):
    """Structured fields returned by the AI resume parser."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linked_in: Optional[str] = None
    location: Optional[str] = None
    education: Optional[str] = None
    experience: Optional[str] = None
    job_title: Optional[str] = None
    skills: list[str] = []
    languages: list[str] = []
    resume_text: Optional[str] = None

    @field_validator("skills", "languages", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value

    @field_validator("education", "experience", mode="before")
    @classmethod
    def _flatten(cls, value):
        # Models occasionally answer with a list or number here.
        if isinstance(value, list):
            return "; ".join(str(v) for v in value if v)
        if isinstance(value, (int, float)):
            return str(value)
        return value


class CandidateRecord(CamelModel):
    """
    A candidate as persisted by the record store.

    ``email`` is the dedup key and is always set; records imported without a
    usable address carry a unique placeholder instead.
    """

    id: Optional[str] = None
    name: str
    email: str
    source: Optional[str] = None
    import_method: Optional[ImportMethod] = None
    import_date: Optional[str] = None
    notes: Optional[str] = None
    stage_id: str = ""
    tags: list[str] = []
    rating: int = 0
    history: list[HistoryEntry] = []

    has_resume: Optional[bool] = None
    resume_file_name: Optional[str] = None
    resume_text: Optional[str] = None
    original_filename: Optional[str] = None
    skills: list[str] = []
    education: Optional[str] = None
    experience: Optional[str] = None
    phone: Optional[str] = None
    linked_in: Optional[str] = None
    location: Optional[str] = None
    job_title: Optional[str] = None
    languages: list[str] = []

    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class UpsertResult(CamelModel):
    id: str
    created: bool
    updated: bool


class BatchFailure(CamelModel):
    email_id: str
    reason: str


class BatchResult(CamelModel):
    processed: int
    candidates: list[CandidateRecord] = []
    failures: list[BatchFailure] = Field(default_factory=list)


class ParsedAttachment(CamelModel):
    """Candidate data parsed from one attachment; not persisted."""

    filename: str
    content_type: Optional[str] = None
    size: int = 0
    text_strategy: str
    candidate: CandidateRecord
