"""
Resolve ``att-<uid>-<ordinal>`` ids back to MIME parts.

The ordinal is only meaningful against the traversal that produced it, so
locate() re-walks the structure with bodystructure.walk_attachments, the same
walk message_indexer uses when it numbers attachments.
"""

import logging
import re
from dataclasses import dataclass

from app.errors import AttachmentNotFound, InvalidAttachmentId
from app.services.bodystructure import BodyPart, MimeNode, display_name, walk_attachments

logger = logging.getLogger(__name__)

_ATTACHMENT_ID = re.compile(r"att-(\d+)-(\d+)")


@dataclass
class LocatedPart:
    uid: int
    ordinal: int
    path: str
    part: BodyPart

    @property
    def filename(self) -> str:
        return display_name(self.part, self.ordinal)


def parse_attachment_id(attachment_id: str) -> tuple[int, int]:
    """Split ``att-<uid>-<ordinal>`` into integers."""
    match = _ATTACHMENT_ID.fullmatch((attachment_id or "").strip())
    if match is None:
        raise InvalidAttachmentId(f"Invalid attachment id {attachment_id!r}; expected att-<uid>-<n>")
    uid, ordinal = int(match.group(1)), int(match.group(2))
    if ordinal < 1:
        raise InvalidAttachmentId(f"Invalid attachment id {attachment_id!r}; ordinals start at 1")
    return uid, ordinal


def locate(structure: MimeNode, attachment_id: str) -> LocatedPart:
    """
    Find the part an attachment id refers to.

    Raises:
        InvalidAttachmentId: malformed id.
        AttachmentNotFound:  the message has fewer attachments than the ordinal.
    """
    uid, ordinal = parse_attachment_id(attachment_id)
    count = 0
    for current, path, part in walk_attachments(structure):
        count = current
        if current == ordinal:
            return LocatedPart(uid=uid, ordinal=ordinal, path=path, part=part)
    logger.info(f"{attachment_id}: message has {count} attachment(s)")
    raise AttachmentNotFound(
        f"Attachment {attachment_id} not found; message {uid} has {count} attachment(s)"
    )
