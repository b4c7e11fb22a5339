"""
Pydantic models for mailbox access (listing and attachment download).

Models:
  Provider / DateFilter     — request enums
  MailboxCredentials        — connection details for one request; never stored
  ListFilters               — listing filter block
  MessageSender             — parsed From header
  AttachmentDescriptor      — one attachment-disposed MIME part of a message
  MessageSummary            — one listed message
  DownloadedAttachment      — base64 wire shape returned by the download call
  *Request                  — request bodies for the inbox router
"""

from enum import Enum
from typing import Optional

from pydantic import Field, SecretStr, model_validator

from app import config
from app.models.base import CamelModel


class Provider(str, Enum):
    GMAIL = "gmail"
    OUTLOOK = "outlook"
    OTHER = "other"


class DateFilter(str, Enum):
    NONE = "none"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class MailboxCredentials(CamelModel):
    """
    Mailbox login details supplied with every inbox request.

    gmail/outlook ignore ``server``/``port`` and use fixed presets; ``other``
    must supply both.
    """

    model_config = {"frozen": True}

    provider: Provider
    server: Optional[str] = None
    port: Optional[int] = None
    username: str = Field(min_length=1)
    password: SecretStr

    @model_validator(mode="after")
    def _require_endpoint_for_other(self) -> "MailboxCredentials":
        if self.provider == Provider.OTHER and (not self.server or not self.port):
            raise ValueError("provider 'other' requires both server and port")
        return self

    def resolve_endpoint(self) -> tuple[str, int]:
        """Return the (host, port) to connect to."""
        preset = config.PROVIDER_PRESETS.get(self.provider.value)
        if preset is not None:
            return preset
        return self.server, self.port


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class ListFilters(CamelModel):
    date_filter: DateFilter = DateFilter.NONE
    job_related: bool = False
    with_attachments: bool = False


class MessageSender(CamelModel):
    name: str = ""
    email: str = ""


class AttachmentDescriptor(CamelModel):
    """
    One attachment-disposed part of a message.

    ``id`` (att-<uid>-<ordinal>) is the only handle a client keeps between the
    list and download calls; ``part_id`` is the IMAP section path ("2", "3.1").
    """

    id: str
    part_id: str
    name: str
    content_type: str
    size: int = 0
    encoding: Optional[str] = None
    is_resume: bool = False


class MessageSummary(CamelModel):
    id: str
    uid: int
    sender: MessageSender = Field(default_factory=MessageSender, alias="from")
    subject: str = "(No subject)"
    received_at: str
    has_attachments: bool = False
    attachments: list[AttachmentDescriptor] = []


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------

class DownloadedAttachment(CamelModel):
    """
    Attachment bytes as returned to the client.

    ``content`` is always base64 text. ``strategy`` records which download
    tier produced it and is not part of the wire shape.
    """

    filename: str
    content_type: str
    content: str
    encoding: str = "base64"
    size: int
    strategy: str = Field(default="", exclude=True)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ListEmailsRequest(MailboxCredentials):
    filters: ListFilters = Field(default_factory=ListFilters)


class ProcessEmailsRequest(MailboxCredentials):
    email_ids: list[str] = Field(min_length=1)


class AttachmentRequest(MailboxCredentials):
    """
    Body for download-attachment / parse-attachment.

    ``email_id`` is accepted for compatibility; the message UID embedded in
    ``attachment_id`` is authoritative.
    """

    email_id: Optional[str] = None
    attachment_id: str
