"""
Candidate record store.

CandidateStore is the interface the assembler depends on. The production
implementation keeps records in the Supabase ``candidates`` table; rows use
snake_case column names matching CandidateRecord's field names.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from supabase import Client

from app.errors import ExternalServiceError
from app.models.candidate import CandidateRecord, UpsertResult

logger = logging.getLogger(__name__)

TABLE = "candidates"


class CandidateStore(Protocol):
    def find_by_email(self, email: str) -> Optional[CandidateRecord]: ...

    def upsert(self, record: CandidateRecord) -> UpsertResult: ...


class SupabaseCandidateStore:
    """CandidateStore over a Supabase table."""

    def __init__(self, client: Client, table: str = TABLE) -> None:
        self.client = client
        self.table = table

    def find_by_email(self, email: str) -> Optional[CandidateRecord]:
        try:
            result = (
                self.client.table(self.table)
                .select("*")
                .eq("email", email)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Candidate lookup failed for {email}: {e}")
            raise ExternalServiceError(f"Record store unavailable: {str(e)}") from e

        if not result.data:
            return None
        return CandidateRecord(**result.data[0])

    def upsert(self, record: CandidateRecord) -> UpsertResult:
        now = datetime.now(timezone.utc).isoformat()
        row = record.model_dump(mode="json", exclude={"id", "created_at"}, exclude_none=True)
        row["updated_at"] = now

        try:
            if record.id:
                result = (
                    self.client.table(self.table)
                    .update(row)
                    .eq("id", record.id)
                    .execute()
                )
                created = False
            else:
                row["created_at"] = now
                result = self.client.table(self.table).insert(row).execute()
                created = True
        except Exception as e:
            logger.error(f"Candidate upsert failed for {record.email}: {e}")
            raise ExternalServiceError(f"Record store unavailable: {str(e)}") from e

        if not result.data:
            raise ExternalServiceError(f"Record store returned no row for {record.email}")

        record_id = str(result.data[0].get("id") or record.id)
        logger.info(f"Candidate {record_id} {'created' if created else 'updated'} ({record.email})")
        return UpsertResult(id=record_id, created=created, updated=not created)
