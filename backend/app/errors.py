"""
Error taxonomy for the mail intake pipeline.

Every error carries a stable ``code`` string and, where a fallback chain was
involved, the list of attempts that failed so a caller can tell which tiers
or strategies were tried and why each one failed.

  IntakeError
    MailConnectionError      auth / network / TLS / protocol replies
      MailboxError           mailbox could not be selected
    SearchError              malformed filter or server rejected the search
    InvalidAttachmentId      id does not match att-<uid>-<ordinal>
    AttachmentNotFound       id does not resolve to a part
    ExtractionError          both download tiers failed
    UnextractableDocument    every text strategy failed
      UnsupportedDocumentType  extension has no extraction path
    ExternalServiceError     record store or AI service unavailable
"""

from typing import Optional

from app.models.document import StrategyAttempt


class IntakeError(Exception):
    """Base class for all pipeline errors."""

    code = "intake_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        attempts: Optional[list[StrategyAttempt]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.attempts: list[StrategyAttempt] = list(attempts or [])

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "attempts": [a.model_dump() for a in self.attempts],
        }


class MailConnectionError(IntakeError):
    code = "connection_error"
    status_code = 502


class MailboxError(MailConnectionError):
    code = "mailbox_error"


class SearchError(IntakeError):
    code = "search_error"
    status_code = 502


class InvalidAttachmentId(IntakeError):
    code = "invalid_id"
    status_code = 400


class AttachmentNotFound(IntakeError):
    code = "not_found"
    status_code = 404


class ExtractionError(IntakeError):
    code = "extraction_error"
    status_code = 422


class UnextractableDocument(IntakeError):
    code = "unextractable_document"
    status_code = 422


class UnsupportedDocumentType(UnextractableDocument):
    code = "unsupported_type"
    status_code = 415


class ExternalServiceError(IntakeError):
    code = "external_service_error"
    status_code = 503


def format_attempts(attempts: list[StrategyAttempt]) -> str:
    """Render attempts as ``name: reason; name: reason`` for messages and logs."""
    return "; ".join(f"{a.strategy}: {a.reason}" for a in attempts)
