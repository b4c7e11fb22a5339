"""
Candidate assembly and de-duplicated import.

assemble() composes a CandidateRecord from header identity, extracted resume
text and AI fields. Header identity wins; AI fields only fill what the
headers did not provide. It always returns a record, even for a header-only
message.

import_candidate() de-duplicates by email: an existing record is kept as is,
previously-absent fields are filled from the new record, and one history
entry is appended.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from app.models.candidate import (
    CandidateRecord,
    HeaderIdentity,
    HistoryEntry,
    ImportMethod,
    ResumeFields,
    UpsertResult,
)
from app.models.mail import MessageSender
from app.services.candidate_store import CandidateStore

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown Candidate"
SOURCE = "email_import"
PLACEHOLDER_DOMAIN = "placeholder.com"

# Fields copied onto an existing record only when it has no value yet.
FILLABLE_FIELDS = (
    "source",
    "import_method",
    "has_resume",
    "resume_file_name",
    "original_filename",
    "resume_text",
    "skills",
    "education",
    "experience",
    "phone",
    "linked_in",
    "location",
    "job_title",
    "languages",
)

_AI_FIELDS = (
    "phone",
    "linked_in",
    "location",
    "education",
    "experience",
    "job_title",
    "skills",
    "languages",
)


def placeholder_email() -> str:
    return f"unknown-{uuid4().hex}@{PLACEHOLDER_DOMAIN}"


def is_placeholder_email(email: str) -> bool:
    return email.startswith("unknown-") and email.endswith(f"@{PLACEHOLDER_DOMAIN}")


def header_identity(sender: MessageSender, subject: Optional[str] = None) -> HeaderIdentity:
    """
    Identity from the From/Subject headers.

    A From header without a display name yields the address as the name;
    that is not a real name, so it is dropped and AI output may fill it.
    """
    name = (sender.name or "").strip()
    if not name or name == sender.email or "@" in name:
        name = None
    return HeaderIdentity(name=name, email=sender.email or None, subject=subject)


def _is_absent(value) -> bool:
    return value is None or value == "" or value == [] or value is False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def assemble(
    identity: HeaderIdentity,
    extracted_text: Optional[str] = None,
    ai_fields: Optional[ResumeFields] = None,
    resume_file_name: Optional[str] = None,
) -> CandidateRecord:
    """
    Build a candidate record.

    import_method is ``ai_parser`` when AI fields were applied,
    ``basic_extraction`` when only text was extracted and ``manual`` when the
    record comes from headers alone.
    """
    timestamp = _now()
    name = identity.name or (ai_fields.name if ai_fields else None) or UNKNOWN_NAME
    email = identity.email or (ai_fields.email if ai_fields else None) or placeholder_email()
    subject = identity.subject or "(No subject)"

    if ai_fields is not None:
        method = ImportMethod.AI_PARSER
    elif extracted_text:
        method = ImportMethod.BASIC_EXTRACTION
    else:
        method = ImportMethod.MANUAL

    record = CandidateRecord(
        name=name,
        email=email.strip().lower(),
        source=SOURCE,
        import_method=method,
        import_date=timestamp,
        history=[HistoryEntry(date=timestamp, note=f'Imported from email with subject: "{subject}"')],
    )

    if resume_file_name:
        record.has_resume = True
        record.resume_file_name = resume_file_name
        record.original_filename = resume_file_name

    if ai_fields is not None:
        for field in _AI_FIELDS:
            setattr(record, field, getattr(ai_fields, field))
        record.resume_text = ai_fields.resume_text or extracted_text
    elif extracted_text:
        record.resume_text = extracted_text

    return record


def merge_into(existing: CandidateRecord, incoming: CandidateRecord, subject: str) -> CandidateRecord:
    """Fill absent fields of ``existing`` from ``incoming`` and append history."""
    merged = existing.model_copy(deep=True)
    filled = []
    if merged.name == UNKNOWN_NAME and incoming.name != UNKNOWN_NAME:
        merged.name = incoming.name
        filled.append("name")
    for field in FILLABLE_FIELDS:
        new_value = getattr(incoming, field)
        if _is_absent(getattr(merged, field)) and not _is_absent(new_value):
            setattr(merged, field, new_value)
            filled.append(field)

    merged.history = merged.history + [
        HistoryEntry(date=_now(), note=f'Another email received with subject: "{subject}"')
    ]
    if filled:
        logger.info(f"Candidate {existing.id}: filled {', '.join(filled)}")
    return merged


def import_candidate(
    store: CandidateStore,
    record: CandidateRecord,
    subject: Optional[str] = None,
) -> UpsertResult:
    """
    Insert ``record``, or merge it into the existing record with the same email.

    Placeholder emails never match an existing record.

    Raises:
        ExternalServiceError: the record store failed.
    """
    existing = None
    if not is_placeholder_email(record.email):
        existing = store.find_by_email(record.email)

    if existing is None:
        return store.upsert(record)

    logger.info(f"Candidate with email {record.email} exists ({existing.id}); merging")
    merged = merge_into(existing, record, subject or "(No subject)")
    return store.upsert(merged)
