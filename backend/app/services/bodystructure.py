"""
BODYSTRUCTURE part trees.

imapclient parses FETCH responses for us: a BODYSTRUCTURE item arrives as an
``imapclient.response_types.BodyData`` tuple whose strings are bytes, whose
numbers are ints and whose NILs are None. A multipart node carries its
children as a list in position 0 (``BodyData.is_multipart``). This module
turns that tuple into BodyPart / Multipart nodes with decoded parameters.

It also owns ``walk_attachments``, the single depth-first traversal that both
the message indexer (to number attachments) and the attachment locator (to
resolve ``att-<uid>-<ordinal>`` ids) use. Both sides MUST go through it or the
ordinals will drift apart.
"""

import email.header
import email.utils
import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union
from urllib.parse import unquote

from imapclient.response_types import BodyData

logger = logging.getLogger(__name__)

ATTACHMENT_DISPOSITIONS = ("attachment", "inline")


class BodyStructureError(ValueError):
    """Raised when a BODYSTRUCTURE value does not describe a MIME tree."""


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def decode_header_value(value: Optional[str]) -> Optional[str]:
    """Decode RFC 2047 encoded-words (``=?utf-8?b?...?=``) when present."""
    if not value or "=?" not in value:
        return value
    try:
        return str(email.header.make_header(email.header.decode_header(value)))
    except (ValueError, LookupError, UnicodeDecodeError):
        return value


def _parse_params(raw) -> dict[str, str]:
    """
    Turn a BODYSTRUCTURE parameter list into a dict with lower-case keys.

    RFC 2231 continuations (``filename*0*``, ``filename*1*``) and extended
    values (``filename*=utf-8''r%C3%A9sum%C3%A9.pdf``) are collapsed into the
    plain key.
    """
    if not isinstance(raw, (list, tuple)):
        return {}
    plain: dict[str, str] = {}
    pieces: dict[str, list[tuple[int, bool, str]]] = {}
    for k in range(0, len(raw) - 1, 2):
        key = (_text(raw[k]) or "").lower()
        value = _text(raw[k + 1]) or ""
        m = re.match(r"^([^*]+)\*(?:(\d+)(\*)?)?$", key)
        if m is None:
            plain[key] = value
            continue
        name, index, extended = m.group(1), m.group(2), m.group(3)
        if index is None:
            pieces.setdefault(name, []).append((0, True, value))
        else:
            pieces.setdefault(name, []).append((int(index), bool(extended), value))

    for name, parts in pieces.items():
        parts.sort(key=lambda p: p[0])
        charset = "utf-8"
        chunks = []
        for index, extended, value in parts:
            if extended and index == 0 and value.count("'") >= 2:
                declared, _lang, value = email.utils.decode_rfc2231(value)
                charset = declared or charset
            chunks.append(unquote(value, encoding=charset, errors="replace") if extended else value)
        plain[name] = "".join(chunks)

    return {k: decode_header_value(v) for k, v in plain.items()}


@dataclass
class BodyPart:
    """A leaf MIME part as described by BODYSTRUCTURE."""

    type: str
    subtype: str
    params: dict[str, str] = field(default_factory=dict)
    content_id: Optional[str] = None
    description: Optional[str] = None
    encoding: Optional[str] = None
    size: int = 0
    disposition: Optional[str] = None
    disposition_params: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return f"{self.type}/{self.subtype}"

    @property
    def filename(self) -> Optional[str]:
        return self.disposition_params.get("filename") or self.params.get("name")

    @property
    def is_attachment(self) -> bool:
        return self.disposition in ATTACHMENT_DISPOSITIONS


@dataclass
class Multipart:
    subtype: str
    parts: list = field(default_factory=list)
    params: dict[str, str] = field(default_factory=dict)


MimeNode = Union[BodyPart, Multipart]


def _parse_disposition(value) -> tuple[Optional[str], dict[str, str]]:
    if isinstance(value, (list, tuple)) and value and isinstance(value[0], (str, bytes)):
        params = _parse_params(value[1]) if len(value) > 1 else {}
        return (_text(value[0]) or "").lower(), params
    return None, {}


def _parse_single(value: BodyData) -> BodyPart:
    if len(value) < 7:
        raise BodyStructureError(f"body part has {len(value)} fields, expected at least 7")
    body_type = (_text(value[0]) or "application").lower()
    subtype = (_text(value[1]) or "octet-stream").lower()
    try:
        size = int(value[6]) if value[6] is not None else 0
    except (TypeError, ValueError):
        size = 0

    # Extension data starts after the type-specific fields.
    if body_type == "text":
        ext = 8
    elif body_type == "message" and subtype == "rfc822":
        ext = 10
    else:
        ext = 7
    disposition_index = ext + 1
    disposition, disposition_params = (None, {})
    if len(value) > disposition_index:
        disposition, disposition_params = _parse_disposition(value[disposition_index])

    encoding = _text(value[5])
    return BodyPart(
        type=body_type,
        subtype=subtype,
        params=_parse_params(value[2]),
        content_id=_text(value[3]),
        description=_text(value[4]),
        encoding=encoding.lower() if encoding else None,
        size=size,
        disposition=disposition,
        disposition_params=disposition_params,
    )


def parse_bodystructure(value: BodyData) -> MimeNode:
    """Build the part tree for one fetched BODYSTRUCTURE item."""
    if not isinstance(value, BodyData) or not value:
        raise BodyStructureError(f"expected a BODYSTRUCTURE tuple, got {type(value).__name__}")
    if not value.is_multipart:
        return _parse_single(value)

    children = [parse_bodystructure(child) for child in value[0]]
    subtype = (_text(value[1]) if len(value) > 1 else None) or "mixed"
    params = _parse_params(value[2]) if len(value) > 2 else {}
    return Multipart(subtype=subtype.lower(), parts=children, params=params)


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def iter_leaf_parts(node: MimeNode, prefix: str = "") -> Iterator[tuple[str, BodyPart]]:
    """
    Yield ``(path, part)`` for every leaf, depth-first, in structure order.

    Paths are IMAP section numbers: 1-based position at each nesting level.
    A non-multipart message has a single part "1".
    """
    if isinstance(node, Multipart):
        for position, child in enumerate(node.parts, start=1):
            path = f"{prefix}.{position}" if prefix else str(position)
            yield from iter_leaf_parts(child, path)
    else:
        yield prefix or "1", node


def walk_attachments(root: MimeNode) -> Iterator[tuple[int, str, BodyPart]]:
    """
    Yield ``(ordinal, path, part)`` for every attachment/inline-disposed leaf.

    ``ordinal`` is the 1-based count of such parts in traversal order; it is
    the second half of the ``att-<uid>-<ordinal>`` attachment id.
    """
    ordinal = 0
    for path, part in iter_leaf_parts(root):
        if part.is_attachment:
            ordinal += 1
            yield ordinal, path, part


def display_name(part: BodyPart, ordinal: int) -> str:
    """Declared filename, or ``unknown-<ordinal>`` so no attachment goes unnamed."""
    return part.filename or f"unknown-{ordinal}"
