"""
Pydantic models shared by the fallback-chain extractors.

StrategyAttempt      — one failed attempt inside an ordered fallback chain
ExtractedDocument    — plain text recovered from a document plus provenance
"""

from pydantic import BaseModel


class StrategyAttempt(BaseModel):
    """A strategy that was tried and did not produce an accepted result."""

    strategy: str
    reason: str


class ExtractedDocument(BaseModel):
    """Transient result of document text extraction."""

    text: str
    source_bytes: int
    strategy: str
    failures: list[StrategyAttempt] = []
