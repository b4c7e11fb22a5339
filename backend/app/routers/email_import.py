"""
Email inbox router.

Connects to a candidate mailbox over IMAP, lists messages, downloads and
parses attachments, and imports candidates. Mailbox credentials travel with
every request and are never stored.

Endpoints (all require X-API-Key):
  POST /connect              — validate mailbox credentials
  POST /list                 — list messages with filters
  POST /process              — import candidates from selected messages
  POST /download-attachment  — one attachment as base64
  POST /parse-attachment     — download + parse one attachment (not persisted)
  POST /attachment           — parse an uploaded attachment (not persisted)

Pipeline errors (IntakeError) are rendered by the handler in app.main.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from app import config
from app.auth import require_api_key
from app.dependencies import get_candidate_store, get_optional_field_extractor
from app.models.mail import (
    AttachmentRequest,
    ListEmailsRequest,
    MailboxCredentials,
    ProcessEmailsRequest,
)
from app.services import email_import
from app.services.candidate_store import CandidateStore
from app.services.resume_parser import FieldExtractor

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file, enforcing the attachment size limit."""
    if file.size is not None and file.size > config.MAX_ATTACHMENT_SIZE:
        raise HTTPException(status_code=400, detail="File exceeds 10 MB limit.")
    content = await file.read()
    if len(content) > config.MAX_ATTACHMENT_SIZE:
        raise HTTPException(status_code=400, detail="File exceeds 10 MB limit.")
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return content


# ---------------------------------------------------------------------------
# Mailbox endpoints
# ---------------------------------------------------------------------------

@router.post("/connect")
async def connect(body: MailboxCredentials) -> dict:
    info = await email_import.validate_connection(body)
    return {
        "success": True,
        "message": "Connection successful",
        "mailbox": {"name": info.name, "exists": info.exists},
    }


@router.post("/list")
async def list_emails(body: ListEmailsRequest) -> dict:
    summaries = await email_import.list_emails(body, body.filters)
    logger.info(f"Listed {len(summaries)} emails for {body.username}")
    return {
        "success": True,
        "emails": [s.model_dump(by_alias=True) for s in summaries],
    }


@router.post("/process")
async def process_emails(
    body: ProcessEmailsRequest,
    store: CandidateStore = Depends(get_candidate_store),
    extractor: Optional[FieldExtractor] = Depends(get_optional_field_extractor),
) -> dict:
    if len(body.email_ids) > config.MAX_PROCESS:
        raise HTTPException(
            status_code=400,
            detail=f"At most {config.MAX_PROCESS} emails can be processed per request",
        )

    result = await email_import.process_emails(body, body.email_ids, store, extractor)
    logger.info(
        f"Processed {len(body.email_ids)} emails, imported {len(result.candidates)} candidates"
    )
    return {"success": True, **result.model_dump(by_alias=True)}


@router.post("/download-attachment")
async def download_attachment(body: AttachmentRequest) -> dict:
    attachment = await email_import.download_attachment(body, body.attachment_id)
    return {"success": True, "attachment": attachment.model_dump(by_alias=True)}


@router.post("/parse-attachment")
async def parse_attachment(
    body: AttachmentRequest,
    extractor: Optional[FieldExtractor] = Depends(get_optional_field_extractor),
) -> dict:
    parsed = await email_import.parse_email_attachment(body, body.attachment_id, extractor)
    return {"success": True, "data": parsed.model_dump(by_alias=True)}


# ---------------------------------------------------------------------------
# Upload endpoint
# ---------------------------------------------------------------------------

@router.post("/attachment")
async def process_uploaded_attachment(
    attachment: UploadFile = File(...),
    extractor: Optional[FieldExtractor] = Depends(get_optional_field_extractor),
) -> dict:
    content = await read_upload(attachment)
    filename = attachment.filename or "attachment"
    parsed = await email_import.process_attachment(
        filename, content, attachment.content_type, extractor
    )
    return {"success": True, "data": parsed.model_dump(by_alias=True)}
