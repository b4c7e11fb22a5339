"""
Email import orchestration.

Each public coroutine here backs one inbox route:

  validate_connection     POST /api/email/inbox/connect
  list_emails             POST /api/email/inbox/list
  download_attachment     POST /api/email/inbox/download-attachment
  parse_email_attachment  POST /api/email/inbox/parse-attachment
  process_attachment      POST /api/email/inbox/attachment, /api/resume/parse
  process_emails          POST /api/email/inbox/process

Every call opens its own MailSession and closes it before returning. The
mailbox is always selected read-only and bodies are fetched with BODY.PEEK,
so importing never changes a message's \\Seen flag.
"""

import asyncio
import base64
import email
import logging
import os
import re
import shutil
import tempfile
from email import policy
from email.message import EmailMessage
from typing import Callable, Optional, Union

from app.errors import (
    AttachmentNotFound,
    ExternalServiceError,
    ExtractionError,
    IntakeError,
)
from app.models.candidate import (
    BatchFailure,
    BatchResult,
    CandidateRecord,
    HeaderIdentity,
    ParsedAttachment,
)
from app.models.mail import (
    DownloadedAttachment,
    ListFilters,
    MailboxCredentials,
    MessageSummary,
)
from app.services.attachment_extractor import download
from app.services.attachment_locator import locate, parse_attachment_id
from app.services.bodystructure import BodyStructureError, parse_bodystructure
from app.services.candidate_assembler import assemble, header_identity, import_candidate
from app.services.candidate_store import CandidateStore
from app.services.document_text import SUPPORTED_EXTENSIONS, extract_text, normalize_extension
from app.services.mail_session import MailboxInfo, MailSession, fetched_body, open_session
from app.services.message_indexer import (
    DEFAULT_SUBJECT,
    is_resume_filename,
    list_messages,
    parse_sender,
)
from app.services.resume_parser import FieldExtractor

logger = logging.getLogger(__name__)

Connector = Optional[Callable]


# ---------------------------------------------------------------------------
# Mailbox calls
# ---------------------------------------------------------------------------

async def validate_connection(
    credentials: MailboxCredentials, connector: Connector = None
) -> MailboxInfo:
    """Log in, select INBOX, log out. Raises MailConnectionError on failure."""
    async with open_session(credentials, connector=connector) as session:
        info = session.mailbox
    logger.info(f"Connection check OK for {credentials.username} ({info.exists} messages)")
    return info


async def list_emails(
    credentials: MailboxCredentials,
    filters: Optional[ListFilters] = None,
    connector: Connector = None,
) -> list[MessageSummary]:
    async with open_session(credentials, connector=connector) as session:
        return await list_messages(session, filters)


async def _download_in_session(session: MailSession, attachment_id: str) -> DownloadedAttachment:
    uid, _ = parse_attachment_id(attachment_id)
    items = await session.uid_fetch(uid, ["BODYSTRUCTURE"])
    item = items.get(uid)
    if item is None or item.get(b"BODYSTRUCTURE") is None:
        raise AttachmentNotFound(f"Message {uid} not found")
    try:
        structure = parse_bodystructure(item[b"BODYSTRUCTURE"])
    except BodyStructureError as exc:
        raise ExtractionError(f"Message {uid} has an unreadable structure: {exc}") from exc
    located = locate(structure, attachment_id)
    return await download(session, located)


async def download_attachment(
    credentials: MailboxCredentials,
    attachment_id: str,
    connector: Connector = None,
) -> DownloadedAttachment:
    """
    Download one attachment as base64.

    The message UID comes from the attachment id itself; any separately
    supplied email id is not consulted.
    """
    parse_attachment_id(attachment_id)
    async with open_session(credentials, connector=connector) as session:
        return await _download_in_session(session, attachment_id)


# ---------------------------------------------------------------------------
# Attachment parsing
# ---------------------------------------------------------------------------

async def _extract_fields(extractor: Optional[FieldExtractor], text: str):
    """AI fields for ``text``, or None when the extractor is missing or fails."""
    if extractor is None:
        return None
    try:
        return await asyncio.to_thread(extractor.extract_fields, text)
    except ExternalServiceError as exc:
        logger.warning(f"AI parsing unavailable, using basic extraction: {exc.message}")
        return None


async def process_attachment(
    filename: str,
    content: bytes,
    content_type: Optional[str],
    extractor: Optional[FieldExtractor],
    identity: Optional[HeaderIdentity] = None,
) -> ParsedAttachment:
    """
    Turn one attachment into candidate data (not persisted).

    Raises:
        UnsupportedDocumentType / UnextractableDocument: no text could be read.
    """
    document = await asyncio.to_thread(extract_text, content, filename)
    fields = await _extract_fields(extractor, document.text)
    candidate = assemble(
        identity or HeaderIdentity(),
        extracted_text=document.text,
        ai_fields=fields,
        resume_file_name=filename,
    )
    return ParsedAttachment(
        filename=filename,
        content_type=content_type,
        size=len(content),
        text_strategy=document.strategy,
        candidate=candidate,
    )


async def parse_email_attachment(
    credentials: MailboxCredentials,
    attachment_id: str,
    extractor: Optional[FieldExtractor],
    connector: Connector = None,
) -> ParsedAttachment:
    attachment = await download_attachment(credentials, attachment_id, connector=connector)
    content = base64.b64decode(attachment.content)
    return await process_attachment(
        attachment.filename, content, attachment.content_type, extractor
    )


# ---------------------------------------------------------------------------
# Batch import
# ---------------------------------------------------------------------------

def _stage(staging_dir: str, uid: int, filename: str, payload: bytes) -> str:
    sanitized = re.sub(r"[^\w\-.]", "_", filename)
    path = os.path.join(staging_dir, f"{uid}-{sanitized}")
    with open(path, "wb") as fh:
        fh.write(payload)
    return path


def _extract_staged(path: str, filename: str):
    with open(path, "rb") as fh:
        return extract_text(fh.read(), filename)


def _remove_staging(staging_dir: str) -> None:
    try:
        shutil.rmtree(staging_dir)
    except OSError as exc:
        logger.warning(f"Failed to remove staging directory {staging_dir}: {exc}")


async def _read_resume(
    message: EmailMessage, uid: int, staging_dir: str
) -> tuple[Optional[str], Optional[str]]:
    """
    Return (resume filename, extracted text) for the first usable resume.

    The filename is reported even when text extraction failed, so the record
    still shows a resume was received.
    """
    resume_name = None
    for part in message.iter_attachments():
        filename = part.get_filename()
        if not filename or not is_resume_filename(filename):
            continue
        resume_name = resume_name or filename
        if normalize_extension(filename) not in SUPPORTED_EXTENSIONS:
            continue
        payload = part.get_payload(decode=True) or b""
        try:
            path = await asyncio.to_thread(_stage, staging_dir, uid, filename, payload)
            document = await asyncio.to_thread(_extract_staged, path, filename)
        except (IntakeError, OSError) as exc:
            logger.error(f"Message {uid}: error processing attachment {filename}: {exc}")
            continue
        return filename, document.text
    return resume_name, None


async def _import_message(
    session: MailSession,
    email_id: str,
    staging_dir: str,
    store: CandidateStore,
    extractor: Optional[FieldExtractor],
    store_lock: asyncio.Lock,
) -> CandidateRecord:
    uid = int(email_id)
    items = await session.uid_fetch(uid, ["BODY.PEEK[]"])
    raw = fetched_body(items.get(uid))
    if not raw:
        raise AttachmentNotFound(f"Message {uid} not found")

    message = email.message_from_bytes(raw, policy=policy.default)
    subject = str(message.get("Subject") or "").strip() or DEFAULT_SUBJECT
    identity = header_identity(parse_sender(str(message.get("From") or "")), subject)

    resume_name, text = await _read_resume(message, uid, staging_dir)
    fields = await _extract_fields(extractor, text) if text else None

    record = assemble(identity, extracted_text=text, ai_fields=fields, resume_file_name=resume_name)
    # find_by_email and upsert must not interleave across messages of one batch.
    async with store_lock:
        result = await asyncio.to_thread(import_candidate, store, record, subject)
    record.id = result.id
    logger.info(f"Message {uid}: candidate {result.id} ({'created' if result.created else 'merged'})")
    return record


async def _guarded_import(
    session: MailSession,
    email_id: str,
    staging_dir: str,
    store: CandidateStore,
    extractor: Optional[FieldExtractor],
    store_lock: asyncio.Lock,
) -> Union[CandidateRecord, BatchFailure]:
    try:
        return await _import_message(session, email_id, staging_dir, store, extractor, store_lock)
    except Exception as exc:
        reason = exc.message if isinstance(exc, IntakeError) else f"{type(exc).__name__}: {exc}"
        logger.error(f"Error processing email {email_id}: {reason}")
        return BatchFailure(email_id=email_id, reason=reason)


async def process_emails(
    credentials: MailboxCredentials,
    email_ids: list[str],
    store: CandidateStore,
    extractor: Optional[FieldExtractor],
    connector: Connector = None,
) -> BatchResult:
    """
    Import candidates from a batch of messages.

    One session and one staging directory serve the whole batch; each message
    is handled by its own task. Fetching and text extraction run concurrently;
    the store lookup-then-write runs one message at a time, so two messages
    from the same sender yield one candidate. A failing message is recorded
    in ``failures`` and does not affect the others. The staging directory is
    removed on every exit path.

    Raises:
        MailConnectionError: the session could not be opened.
    """
    if not email_ids:
        return BatchResult(processed=0)

    staging_dir = tempfile.mkdtemp(prefix="mail-intake-")
    store_lock = asyncio.Lock()
    try:
        async with open_session(credentials, connector=connector) as session:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(
                        _guarded_import(session, email_id, staging_dir, store, extractor, store_lock)
                    )
                    for email_id in email_ids
                ]
    finally:
        _remove_staging(staging_dir)

    candidates, failures = [], []
    for task in tasks:
        outcome = task.result()
        if isinstance(outcome, BatchFailure):
            failures.append(outcome)
        else:
            candidates.append(outcome)

    logger.info(f"Batch import: {len(candidates)} imported, {len(failures)} failed")
    return BatchResult(processed=len(candidates), candidates=candidates, failures=failures)
