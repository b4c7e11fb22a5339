"""
Document text extraction.

PDF goes through an ordered chain of independent engines, first non-blank
text wins:

  1. pdfplumber  (retried with lenient options on xref/structure errors)
  2. pypdf       (strict=False, page by page)
  3. pymupdf     (last resort, separate parser)

DOC/DOCX use mammoth, TXT is decoded directly. Any other extension is
rejected before an engine runs. Whitespace-only text is never a success.
Does NOT support scanned PDFs (no OCR): an image-only PDF fails after all
three engines return empty text.
Does NOT support legacy binary .doc files either: mammoth reads only OOXML
(.docx), so a Word 97-2003 document is accepted by extension and then fails
with UnextractableDocument.
"""

import io
import logging
import os

import fitz  # PyMuPDF
import mammoth
import pdfplumber
from pypdf import PdfReader

from app import config
from app.errors import UnextractableDocument, UnsupportedDocumentType, format_attempts
from app.models.document import ExtractedDocument
from app.services.fallback import ChainExhausted, FallbackChain

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".pdf", ".doc", ".docx", ".txt")

# Failure messages that suggest a damaged cross-reference table.
_STRUCTURE_ERROR_MARKERS = ("xref", "cross-reference", "pdfsyntaxerror", "startxref")


def _looks_like_structure_error(exc: Exception) -> bool:
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _STRUCTURE_ERROR_MARKERS)


def _join_pages(pages: list[str]) -> str:
    return "\n\n".join(p for p in pages if p and p.strip())


# ---------------------------------------------------------------------------
# PDF engines
# ---------------------------------------------------------------------------

def _pdfplumber_text(content: bytes, lenient: bool) -> str:
    options = {"strict_metadata": False, "laparams": {"all_texts": True}} if lenient else {}
    pages = []
    with pdfplumber.open(io.BytesIO(content), **options) as pdf:
        for i, page in enumerate(pdf.pages, start=1):
            try:
                pages.append(page.extract_text() or "")
            except Exception as exc:
                if not lenient:
                    raise
                logger.debug(f"pdfplumber (lenient): page {i} skipped: {exc}")
    return _join_pages(pages)


def extract_with_pdfplumber(content: bytes) -> str:
    try:
        return _pdfplumber_text(content, lenient=False)
    except Exception as exc:
        if not _looks_like_structure_error(exc):
            raise
        logger.info(f"pdfplumber hit a structure error ({exc}); retrying leniently")
        return _pdfplumber_text(content, lenient=True)


def extract_with_pypdf(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content), strict=False)
    if reader.is_encrypted and not reader.decrypt(""):
        raise ValueError("PDF is encrypted")
    pages = []
    for i, page in enumerate(reader.pages, start=1):
        try:
            pages.append(page.extract_text() or "")
        except Exception as exc:
            logger.debug(f"pypdf: page {i} contributed no text: {exc}")
            pages.append("")
    return _join_pages(pages)


def extract_with_pymupdf(content: bytes) -> str:
    with fitz.open(stream=content, filetype="pdf") as doc:
        if doc.needs_pass:
            raise ValueError("PDF is encrypted")
        return _join_pages([page.get_text() for page in doc])


def pdf_chain() -> FallbackChain:
    return FallbackChain(
        "pdf text",
        [
            ("pdfplumber", extract_with_pdfplumber),
            ("pypdf", extract_with_pypdf),
            ("pymupdf", extract_with_pymupdf),
        ],
    )


# ---------------------------------------------------------------------------
# Other formats
# ---------------------------------------------------------------------------

def extract_with_mammoth(content: bytes) -> str:
    result = mammoth.extract_raw_text(io.BytesIO(content))
    for message in getattr(result, "messages", []) or []:
        logger.debug(f"mammoth: {message}")
    return result.value or ""


def decode_plain_text(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return content.decode("latin-1")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def normalize_extension(name_or_extension: str) -> str:
    """``Resume.PDF`` / ``PDF`` / ``.pdf`` -> ``.pdf``."""
    value = (name_or_extension or "").strip().lower()
    if "." in value:
        return os.path.splitext(value)[1] or value
    return f".{value}" if value else ""


def extract_text(content: bytes, extension: str) -> ExtractedDocument:
    """
    Recover plain text from a document.

    Args:
        content:   Raw document bytes.
        extension: File extension or filename; case-insensitive.

    Raises:
        UnsupportedDocumentType: no extraction path for this extension.
        UnextractableDocument:   document too large, or every strategy failed;
                                 ``attempts`` holds each strategy's reason.
    """
    ext = normalize_extension(extension)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedDocumentType(f"Unsupported document type {ext or extension!r}")
    if len(content) > config.MAX_ATTACHMENT_SIZE:
        raise UnextractableDocument(
            f"Document is {len(content)} bytes; limit is {config.MAX_ATTACHMENT_SIZE}"
        )

    if ext == ".pdf":
        chain = pdf_chain()
    elif ext in (".doc", ".docx"):
        chain = FallbackChain("word text", [("mammoth", extract_with_mammoth)])
    else:
        chain = FallbackChain("plain text", [("decode", decode_plain_text)])

    try:
        result = chain.run(content)
    except ChainExhausted as exc:
        logger.warning(f"No text extracted from {ext} document: {format_attempts(exc.attempts)}")
        raise UnextractableDocument(
            f"No text could be extracted from the {ext} document", attempts=exc.attempts
        ) from exc

    logger.info(f"Extracted {len(result.value)} chars from {ext} via {result.strategy}")
    return ExtractedDocument(
        text=result.value,
        source_bytes=len(content),
        strategy=result.strategy,
        failures=result.failures,
    )
