"""
Message listing: search, header parsing, attachment descriptors, filters.

list_messages() issues one UID SEARCH (date window, server side) and one UID
FETCH for headers plus BODYSTRUCTURE. Message bodies are never downloaded
here, and BODY.PEEK leaves the \\Seen flag alone. Job relevance and attachment
presence are evaluated client side on the parsed result.
"""

import calendar
import email
import logging
import re
from datetime import date, datetime, timedelta, timezone
from email import policy
from email.utils import parseaddr, parsedate_to_datetime
from typing import Optional

from app import config
from app.models.mail import (
    AttachmentDescriptor,
    DateFilter,
    ListFilters,
    MessageSender,
    MessageSummary,
)
from app.services.bodystructure import (
    BodyStructureError,
    MimeNode,
    decode_header_value,
    display_name,
    parse_bodystructure,
    walk_attachments,
)
from app.services.mail_session import MailSession, fetched_body

logger = logging.getLogger(__name__)

HEADER_SECTION = "HEADER.FIELDS (FROM TO SUBJECT DATE)"

FETCH_ITEMS = ["BODYSTRUCTURE", f"BODY.PEEK[{HEADER_SECTION}]"]

DEFAULT_SUBJECT = "(No subject)"

# "job [DEV42]" style job-code tokens used by job boards in subjects.
_JOB_CODE = re.compile(r"job\s*\[\w+\]", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _previous_month(today: date) -> date:
    year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def build_search_criteria(date_filter: DateFilter, today: Optional[date] = None) -> list:
    """Translate a date filter into IMAP SEARCH criteria (dates stay ``date`` values)."""
    today = today or date.today()
    if date_filter == DateFilter.TODAY:
        since = today
    elif date_filter == DateFilter.WEEK:
        since = today - timedelta(days=7)
    elif date_filter == DateFilter.MONTH:
        since = _previous_month(today)
    else:
        return ["ALL"]
    return ["SINCE", since]


def is_job_related(subject: str) -> bool:
    lowered = subject.lower()
    if any(keyword in lowered for keyword in config.JOB_KEYWORDS):
        return True
    return bool(_JOB_CODE.search(subject))


def is_resume_filename(name: str) -> bool:
    return name.lower().endswith(config.RESUME_EXTENSIONS)


def parse_sender(raw: str) -> MessageSender:
    """
    Split a From header into name and address.

    ``Jane Doe <jane@x.com>`` -> ("Jane Doe", "jane@x.com"); when the header
    carries no display name the raw value is used as the name.
    """
    raw = (raw or "").strip()
    name, address = parseaddr(raw)
    if not address:
        return MessageSender(name=raw, email="")
    return MessageSender(name=name.strip() or raw, email=address)


def parse_received_at(raw: Optional[str]) -> str:
    if raw:
        try:
            received = parsedate_to_datetime(raw)
            if received.tzinfo is None:
                received = received.replace(tzinfo=timezone.utc)
            return received.isoformat()
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header {raw!r}, using now")
    return datetime.now(timezone.utc).isoformat()


def describe_attachments(uid: int, structure: MimeNode) -> list[AttachmentDescriptor]:
    """Build descriptors for every attachment-disposed leaf, in walk order."""
    descriptors = []
    for ordinal, path, part in walk_attachments(structure):
        name = display_name(part, ordinal)
        descriptors.append(
            AttachmentDescriptor(
                id=f"att-{uid}-{ordinal}",
                part_id=path,
                name=name,
                content_type=part.content_type,
                size=part.size,
                encoding=part.encoding,
                is_resume=is_resume_filename(name),
            )
        )
    return descriptors


def summarize(uid: int, item: dict) -> MessageSummary:
    """Turn one fetched message into a MessageSummary."""
    header_bytes = fetched_body(item, HEADER_SECTION) or b""
    headers = email.message_from_bytes(header_bytes, policy=policy.default)

    subject = decode_header_value(str(headers.get("Subject") or "").strip()) or DEFAULT_SUBJECT

    attachments: list[AttachmentDescriptor] = []
    raw_structure = item.get(b"BODYSTRUCTURE")
    if raw_structure is not None:
        try:
            attachments = describe_attachments(uid, parse_bodystructure(raw_structure))
        except BodyStructureError as exc:
            logger.warning(f"Message {uid}: unparseable BODYSTRUCTURE ({exc}); listing without attachments")

    return MessageSummary(
        id=str(uid),
        uid=uid,
        sender=parse_sender(str(headers.get("From") or "")),
        subject=subject,
        received_at=parse_received_at(headers.get("Date")),
        has_attachments=bool(attachments),
        attachments=attachments,
    )


def _passes(summary: MessageSummary, filters: ListFilters) -> bool:
    if filters.job_related and not is_job_related(summary.subject):
        return False
    if filters.with_attachments and not summary.has_attachments:
        return False
    return True


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

async def list_messages(
    session: MailSession,
    filters: Optional[ListFilters] = None,
    max_fetch: Optional[int] = None,
    today: Optional[date] = None,
) -> list[MessageSummary]:
    """
    List messages in the selected mailbox.

    Only the ``max_fetch`` most recent UIDs (default config.MAX_FETCH) are
    fetched. Results keep the server's FETCH order.

    Raises:
        SearchError:          the server rejected the search.
        MailConnectionError:  the fetch failed.
    """
    filters = filters or ListFilters()
    limit = max_fetch if max_fetch is not None else config.MAX_FETCH

    criteria = build_search_criteria(filters.date_filter, today=today)
    uids = await session.uid_search(*criteria)
    logger.info(f"Search {' '.join(str(c) for c in criteria)} matched {len(uids)} message(s)")
    if not uids:
        return []
    if len(uids) > limit:
        uids = uids[-limit:]

    items = await session.uid_fetch(uids, FETCH_ITEMS)
    summaries = [summarize(uid, item) for uid, item in items.items()]
    result = [s for s in summaries if _passes(s, filters)]
    logger.info(f"Listed {len(result)} of {len(summaries)} fetched message(s)")
    return result
