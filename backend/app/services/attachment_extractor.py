"""
Attachment download with a two-tier fallback.

Tier 1, "structured": fetch just the located section (``BODY.PEEK[2.1]``)
and decode it with the encoding declared in BODYSTRUCTURE.

Tier 2, "raw-scan": fetch the whole message (``BODY.PEEK[]``) and dig the
part out of the raw text. Servers that mis-report section numbers or return
empty sections for some parts are still readable this way. Raw scan is itself
an ordered chain:

  boundary-split   split on the declared MIME boundaries; matchers are tried
                   in priority order, each against every segment
  filename-regex   regex anchored on the declared filename, then
                   Content-Transfer-Encoding, then the body

Whatever tier wins, ``content`` is valid base64. An empty result counts as a
failure so the next tier runs.
"""

import base64
import binascii
import logging
import quopri
import re
from typing import Callable, Optional, Sequence

from app.errors import ExtractionError, format_attempts
from app.models.mail import DownloadedAttachment
from app.services.attachment_locator import LocatedPart
from app.services.bodystructure import decode_header_value
from app.services.fallback import ChainExhausted, FallbackChain
from app.services.mail_session import MailSession, fetched_body

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_WHITESPACE = re.compile(rb"\s+")
_BOUNDARY = re.compile(
    r"Content-Type:[ \t]*multipart/[^;\r\n]*;(?:[^\r\n]|\r?\n[ \t])*?"
    r'boundary="?([^"\s;]+)"?',
    re.IGNORECASE,
)
_DECLARED_NAME = re.compile(r'\b(?:file)?name="?([^";\r\n]+)"?', re.IGNORECASE)
_TRANSFER_ENCODING = re.compile(r"Content-Transfer-Encoding:\s*(\S+)", re.IGNORECASE)


class BodyAccumulator:
    """
    Collects a section body delivered in chunks.

    The content is only available once finish() has been called, so a
    consumer can never act on a partially received body.
    """

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def append(self, chunk: bytes) -> None:
        if self._finished:
            raise RuntimeError("body already finished")
        if chunk:
            self._chunks.append(chunk)

    def finish(self) -> bytes:
        self._finished = True
        return b"".join(self._chunks)


def normalize_content(payload: bytes, encoding: Optional[str]) -> str:
    """
    Re-express a part body as base64 text.

    base64            whitespace stripped, then validated
    quoted-printable  decoded, then base64-encoded
    7bit/8bit/binary  raw bytes base64-encoded
    anything else     raw bytes base64-encoded
    """
    name = (encoding or "").strip().lower()
    if name == "base64":
        cleaned = _WHITESPACE.sub(b"", payload)
        try:
            base64.b64decode(cleaned, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 content: {exc}") from exc
        return cleaned.decode("ascii")
    if name == "quoted-printable":
        return base64.b64encode(quopri.decodestring(payload)).decode("ascii")
    return base64.b64encode(payload).decode("ascii")


def _build_attachment(located: LocatedPart, content: str, strategy: str) -> DownloadedAttachment:
    return DownloadedAttachment(
        filename=located.filename,
        content_type=located.part.content_type,
        content=content,
        size=len(base64.b64decode(content)) if content else 0,
        strategy=strategy,
    )


def _accept_attachment(value: Optional[DownloadedAttachment]) -> Optional[str]:
    if value is None:
        return "no result"
    if not value.content:
        return "empty content"
    return None


# ---------------------------------------------------------------------------
# Raw-scan matchers
# ---------------------------------------------------------------------------

# A matcher decides whether a raw MIME segment is the located part.
# Arguments: (segment headers, whole segment, located part).
SegmentMatcher = Callable[[str, str, LocatedPart], bool]


def declared_boundaries(raw: str) -> list[str]:
    """Boundaries declared by multipart Content-Type headers, in order of appearance."""
    return list(dict.fromkeys(_BOUNDARY.findall(raw)))


def _names_other_file(headers: str, located: LocatedPart) -> bool:
    """True when the segment declares a filename that is not the located part's."""
    wanted = located.part.filename
    match = _DECLARED_NAME.search(headers)
    if not wanted or match is None:
        return False
    declared = decode_header_value(match.group(1).strip()) or ""
    return declared.lower() != wanted.lower()


def match_declared_filename(headers: str, segment: str, located: LocatedPart) -> bool:
    name = located.part.filename
    if not name:
        return False
    candidates = (f'filename="{name}"', f"filename={name}", f'name="{name}"', f"name={name}")
    return any(c in segment for c in candidates)


def match_declared_type(headers: str, segment: str, located: LocatedPart) -> bool:
    part = located.part
    if part.type in ("text", "multipart", "message"):
        return False
    if _names_other_file(headers, located):
        return False
    pattern = r"Content-Type:\s*" + re.escape(part.content_type) + r"\b"
    return re.search(pattern, headers, re.IGNORECASE) is not None


def match_disposition_extension(headers: str, segment: str, located: LocatedPart) -> bool:
    name = located.filename
    if "." not in name:
        return False
    if _names_other_file(headers, located):
        return False
    extension = name[name.rfind("."):].lower()
    if not re.search(r"Content-Disposition:\s*attachment", headers, re.IGNORECASE):
        return False
    return extension in headers.lower()


# Most specific first: every segment is tried against a matcher before the
# next matcher runs.
DEFAULT_MATCHERS: tuple[SegmentMatcher, ...] = (
    match_declared_filename,
    match_declared_type,
    match_disposition_extension,
)


def _split_segment(segment: str) -> Optional[tuple[str, str]]:
    """Split a raw segment into (headers, body) at the first blank line."""
    if segment.startswith("\r\n"):
        segment = segment[2:]
    elif segment.startswith("\n"):
        segment = segment[1:]
    positions = [(segment.find(sep), sep) for sep in ("\r\n\r\n", "\n\n")]
    found = [(pos, sep) for pos, sep in positions if pos != -1]
    if not found:
        return None
    pos, sep = min(found)
    headers, body = segment[:pos], segment[pos + len(sep):]
    # The line break before the next delimiter belongs to the delimiter.
    if body.endswith("\r\n"):
        body = body[:-2]
    elif body.endswith("\n"):
        body = body[:-1]
    return headers, body


def scan_boundary_segments(
    raw: str,
    located: LocatedPart,
    matchers: Sequence[SegmentMatcher] = DEFAULT_MATCHERS,
) -> str:
    """
    Find the part among boundary-delimited segments; returns base64 text.

    Matchers run as prioritized passes over all segments, so a filename match
    in a later segment beats a content-type match in an earlier one.
    """
    boundaries = declared_boundaries(raw)
    if not boundaries:
        raise ValueError("no boundary marker in message")
    delimiter = re.compile("|".join(re.escape(f"--{b}") for b in boundaries))
    segments = delimiter.split(raw)
    logger.debug(f"Raw scan: {len(boundaries)} boundary marker(s), {len(segments)} segment(s)")

    # segments[0] is the message header block and preamble.
    parsed = []
    for index, segment in enumerate(segments[1:], start=1):
        split = _split_segment(segment)
        if split is not None:
            parsed.append((index, segment, split[0], split[1]))

    for matcher in matchers:
        for index, segment, headers, body in parsed:
            if not matcher(headers, segment, located):
                continue
            match = _TRANSFER_ENCODING.search(headers)
            encoding = match.group(1).lower() if match else "base64"
            logger.info(f"Raw scan matched segment {index} via {matcher.__name__} (encoding {encoding})")
            return normalize_content(body.encode("latin-1"), encoding)
    raise ValueError("no segment matched the located part")


def scan_filename_regex(raw: str, located: LocatedPart) -> str:
    """Locate the part by a regex anchored on its declared filename."""
    name = located.part.filename
    if not name:
        raise ValueError("part declares no filename to anchor on")
    pattern = re.compile(
        r"Content-Type:[^\r\n]*\r?\n[^\r\n]*filename\*?=\"?" + re.escape(name) + r"[^\r\n]*\r?\n"
        r"(?:[^\r\n]+\r?\n)*?"
        r"Content-Transfer-Encoding:\s*(\w+)\r?\n"
        r"(?:[^\r\n]+\r?\n)*?\r?\n"
        r"([\s\S]+?)(?:\r?\n--|$)",
        re.IGNORECASE,
    )
    match = pattern.search(raw)
    if match is None:
        raise ValueError(f"no section for filename {name!r}")
    return normalize_content(match.group(2).encode("latin-1"), match.group(1))


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

async def fetch_structured(session: MailSession, located: LocatedPart) -> DownloadedAttachment:
    items = await session.uid_fetch(located.uid, [f"BODY.PEEK[{located.path}]"])
    item = items.get(located.uid)
    if item is None:
        raise ValueError(f"message {located.uid} not returned by server")
    body = fetched_body(item, located.path)
    if body is None:
        raise ValueError(f"server returned no BODY[{located.path}]")

    accumulator = BodyAccumulator()
    for start in range(0, len(body), CHUNK_SIZE):
        accumulator.append(body[start:start + CHUNK_SIZE])
    payload = accumulator.finish()
    return _build_attachment(located, normalize_content(payload, located.part.encoding), "structured")


async def fetch_raw_scan(
    session: MailSession,
    located: LocatedPart,
    matchers: Sequence[SegmentMatcher] = DEFAULT_MATCHERS,
) -> DownloadedAttachment:
    items = await session.uid_fetch(located.uid, ["BODY.PEEK[]"])
    raw_bytes = fetched_body(items.get(located.uid))
    if not raw_bytes:
        raise ValueError(f"server returned no body for message {located.uid}")
    # latin-1 maps every byte to one code point, so the scan is lossless.
    raw = raw_bytes.decode("latin-1")

    chain = FallbackChain(
        "raw scan",
        [
            ("boundary-split", lambda text: scan_boundary_segments(text, located, matchers)),
            ("filename-regex", lambda text: scan_filename_regex(text, located)),
        ],
    )
    result = chain.run(raw)
    return _build_attachment(located, result.value, f"raw-scan/{result.strategy}")


async def download(
    session: MailSession,
    located: LocatedPart,
    matchers: Sequence[SegmentMatcher] = DEFAULT_MATCHERS,
) -> DownloadedAttachment:
    """
    Download one located attachment as base64.

    Raises:
        ExtractionError: both tiers failed; ``attempts`` lists each tier and
                         raw-scan sub-strategy with its reason.
    """
    chain = FallbackChain(
        "attachment download",
        [
            ("structured", fetch_structured),
            ("raw-scan", lambda s, loc: fetch_raw_scan(s, loc, matchers)),
        ],
        accept=_accept_attachment,
    )
    try:
        result = await chain.arun(session, located)
    except ChainExhausted as exc:
        logger.error(f"att-{located.uid}-{located.ordinal}: download failed ({format_attempts(exc.attempts)})")
        raise ExtractionError(
            f"Could not extract attachment {located.filename!r} from message {located.uid}",
            attempts=exc.attempts,
        ) from exc

    attachment = result.value
    logger.info(
        f"att-{located.uid}-{located.ordinal}: {attachment.filename} "
        f"({attachment.size} bytes) via {attachment.strategy}"
    )
    return attachment
