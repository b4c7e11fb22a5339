"""
Resume field extraction with Claude.

Sends resume text to the Anthropic Messages API and parses the JSON answer
into ResumeFields. The client is created once at startup (see app.main) and
reached through app.dependencies, so tests can substitute any object with an
``extract_fields(text)`` method.
"""

import json
import logging
import os
import re
from typing import Optional, Protocol

import anthropic

from app import config
from app.errors import ExternalServiceError
from app.models.candidate import ResumeFields

logger = logging.getLogger(__name__)

RESUME_PROMPT = """\
You are a recruiting assistant. Read the following resume and extract the candidate's details into structured JSON.

Extract these fields:
- name: The candidate's full name
- email: The candidate's email address
- phone: The candidate's phone number
- linkedIn: LinkedIn profile URL, if present
- location: City / region / country the candidate is based in
- education: A short summary of degrees and institutions
- experience: A short summary of work history (roles, employers, years)
- jobTitle: The candidate's current or most recent job title
- skills: List of technical and professional skills
- languages: List of spoken languages
- resumeText: A cleaned-up plain-text version of the resume

Rules:
- If a field is not found in the resume, set it to null (or [] for lists).
- Do not invent information that is not in the resume.
- skills and languages must be lists of strings.

Respond with ONLY valid JSON matching this schema:
{
  "name": string | null,
  "email": string | null,
  "phone": string | null,
  "linkedIn": string | null,
  "location": string | null,
  "education": string | null,
  "experience": string | null,
  "jobTitle": string | null,
  "skills": [string],
  "languages": [string],
  "resumeText": string | null
}

RESUME TEXT:
{resume_text}
"""


class FieldExtractor(Protocol):
    def extract_fields(self, text: str) -> ResumeFields: ...


def parse_model_json(raw_text: str) -> dict:
    """
    Parse a JSON object out of a model reply.

    Handles markdown code fences and, failing a clean parse, falls back to the
    outermost ``{...}`` span in the reply.
    """
    json_text = raw_text.strip()
    if json_text.startswith("```"):
        lines = json_text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        json_text = "\n".join(lines)

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", json_text)
        if match is None:
            raise ValueError("No JSON object in model response")
        parsed = json.loads(match.group(0))

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


class ClaudeResumeParser:
    """FieldExtractor backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = config.RESUME_PARSER_MODEL,
        max_tokens: int = config.RESUME_PARSER_MAX_TOKENS,
    ) -> None:
        if api_key is None:
            api_key = os.getenv("ANTHROPIC_API_KEY")
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens

    def extract_fields(self, text: str) -> ResumeFields:
        """
        Ask Claude for structured resume fields.

        Raises:
            ExternalServiceError: API call failed or the reply was not JSON.
        """
        if len(text) > config.RESUME_TEXT_MAX_CHARS:
            logger.info(f"Resume text truncated from {len(text)} to {config.RESUME_TEXT_MAX_CHARS} chars")
            text = text[: config.RESUME_TEXT_MAX_CHARS]

        prompt = RESUME_PROMPT.replace("{resume_text}", text)
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            logger.error(f"Resume parser API call failed: {exc}")
            raise ExternalServiceError(f"AI resume parser unavailable: {exc}") from exc

        raw_text = response.content[0].text
        try:
            fields = ResumeFields(**parse_model_json(raw_text))
        except (ValueError, TypeError) as exc:
            logger.error(f"Resume parser returned unusable output: {exc}")
            raise ExternalServiceError(f"AI resume parser returned invalid JSON: {exc}") from exc

        logger.info(
            f"Resume parsed: {response.usage.input_tokens} input / "
            f"{response.usage.output_tokens} output tokens"
        )
        return fields

    def close(self) -> None:
        self.client.close()
