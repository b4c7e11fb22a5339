"""
Resume parsing router.

Endpoints (all require X-API-Key):
  POST /parse             — extract text from an uploaded resume and return
                            the AI-parsed fields (AI service required)
  POST /parse-attachment  — same input, returns candidate data; falls back to
                            basic extraction when the AI service fails
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from app.auth import require_api_key
from app.dependencies import get_field_extractor, get_optional_field_extractor
from app.routers.email_import import read_upload
from app.services import email_import
from app.services.document_text import extract_text
from app.services.resume_parser import FieldExtractor

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/parse")
async def parse_resume(
    file: UploadFile = File(...),
    extractor: FieldExtractor = Depends(get_field_extractor),
) -> dict:
    content = await read_upload(file)
    filename = file.filename or "resume"

    document = await asyncio.to_thread(extract_text, content, filename)
    fields = await asyncio.to_thread(extractor.extract_fields, document.text)
    logger.info(f"Parsed resume {filename} (text via {document.strategy})")

    data = fields.model_dump(by_alias=True)
    if not data.get("resumeText"):
        data["resumeText"] = document.text
    return {"success": True, "data": data}


@router.post("/parse-attachment")
async def parse_resume_attachment(
    attachment: UploadFile = File(...),
    extractor: Optional[FieldExtractor] = Depends(get_optional_field_extractor),
) -> dict:
    content = await read_upload(attachment)
    parsed = await email_import.process_attachment(
        attachment.filename or "attachment", content, attachment.content_type, extractor
    )
    return {"success": True, "data": parsed.model_dump(by_alias=True)}
