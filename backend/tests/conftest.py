"""
Shared test fixtures.

FakeIMAPServer stands in for imapclient.IMAPClient. It holds real RFC 822
messages and answers FETCH by rendering the raw protocol fragments a server
would send and running them through imapclient's own response parser, so
tests see the same BodyData and ``{uid: {b"BODY[2]": ...}}`` shapes as
production.
BODYSTRUCTURE and BODY[<section>] replies are derived from the stored MIME,
so listings and downloads always agree unless a test breaks them on purpose.
"""

import os
import uuid
from datetime import date, datetime, timedelta
from email import message_from_bytes
from email.message import Message
from typing import Optional

# Ensure env vars are set before importing anything that triggers app imports
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

import fitz  # PyMuPDF
import pytest
from imapclient.exceptions import IMAPClientError, LoginError
from imapclient.response_parser import parse_fetch_response

from app.models.candidate import CandidateRecord, UpsertResult
from app.models.mail import MailboxCredentials
from app.services.bodystructure import MimeNode, parse_bodystructure


PASSWORD = "app-password"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def make_pdf(text: str | None = None) -> bytes:
    """Build a one-page PDF; without text the page is blank (image-only stand-in)."""
    doc = fitz.open()
    page = doc.new_page()
    if text:
        y = 72
        for line in text.splitlines():
            page.insert_text((72, y), line)
            y += 16
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# Raw message builders
# ---------------------------------------------------------------------------

def _wrap_base64(data: bytes) -> str:
    import base64

    encoded = base64.b64encode(data).decode("ascii")
    return "\r\n".join(encoded[i:i + 76] for i in range(0, len(encoded), 76))


def attachment_part(
    filename: str,
    content: bytes,
    content_type: str = "application/pdf",
    encoding: str = "base64",
    disposition: str = "attachment",
) -> str:
    if encoding == "base64":
        body = _wrap_base64(content)
    else:
        body = content.decode("latin-1")
    return (
        f'Content-Type: {content_type}; name="{filename}"\r\n'
        f'Content-Disposition: {disposition}; filename="{filename}"\r\n'
        f"Content-Transfer-Encoding: {encoding}\r\n"
        f"\r\n"
        f"{body}"
    )


def text_part(text: str, subtype: str = "plain") -> str:
    return (
        f'Content-Type: text/{subtype}; charset="utf-8"\r\n'
        f"Content-Transfer-Encoding: 7bit\r\n"
        f"\r\n"
        f"{text}"
    )


def multipart(parts: list[str], boundary: str, subtype: str = "mixed") -> str:
    """A multipart entity (headers + body) usable as a nested part."""
    body = "".join(f"--{boundary}\r\n{p}\r\n" for p in parts) + f"--{boundary}--\r\n"
    return f'Content-Type: multipart/{subtype}; boundary="{boundary}"\r\n\r\n{body}'


def build_message(
    subject: str,
    sender: str = "Jane Doe <jane@example.com>",
    received: date | None = None,
    body: str | None = None,
    parts: list[str] | None = None,
    boundary: str = "outer-boundary",
) -> bytes:
    """
    Build a raw message. ``parts`` makes a multipart/mixed message; otherwise
    ``body`` becomes a single text/plain body.
    """
    received = received or date.today()
    stamp = datetime(received.year, received.month, received.day, 9, 30).strftime(
        "%a, %d %b %Y %H:%M:%S +0000"
    )
    headers = (
        f"From: {sender}\r\n"
        f"To: jobs@company.example\r\n"
        f"Subject: {subject}\r\n"
        f"Date: {stamp}\r\n"
        f"MIME-Version: 1.0\r\n"
    )
    if parts is None:
        return (headers + text_part(body or "Hello") + "\r\n").encode("latin-1")
    return (headers + multipart(parts, boundary)).encode("latin-1")


# ---------------------------------------------------------------------------
# BODYSTRUCTURE / section rendering
# ---------------------------------------------------------------------------

def _q(value: str | None) -> str:
    if value is None:
        return "NIL"
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _param_list(pairs: list[tuple[str, str]]) -> str:
    if not pairs:
        return "NIL"
    return "(" + " ".join(f"{_q(k.upper())} {_q(v)}" for k, v in pairs) + ")"


def render_bodystructure(msg: Message) -> str:
    if msg.is_multipart():
        children = "".join(render_bodystructure(p) for p in msg.get_payload())
        boundary = msg.get_boundary()
        return f"({children} {_q(msg.get_content_subtype().upper())} {_param_list([('boundary', boundary)])} NIL NIL NIL)"

    maintype = msg.get_content_maintype()
    params = [(k, v) for k, v in (msg.get_params() or [])[1:]]
    encoding = (msg.get("Content-Transfer-Encoding") or "7bit").strip()
    payload = msg.get_payload()
    size = len(payload.encode("latin-1")) if isinstance(payload, str) else 0

    fields = [
        _q(maintype.upper()),
        _q(msg.get_content_subtype().upper()),
        _param_list(params),
        "NIL",
        "NIL",
        _q(encoding.upper()),
        str(size),
    ]
    if maintype == "text":
        fields.append(str(payload.count("\n") + 1))
    fields.append("NIL")  # md5

    disposition = msg.get_content_disposition()
    if disposition:
        filename = msg.get_param("filename", header="content-disposition")
        dparams = [("filename", filename)] if filename else []
        fields.append(f"({_q(disposition.upper())} {_param_list(dparams)})")
    else:
        fields.append("NIL")
    fields += ["NIL", "NIL"]
    return "(" + " ".join(fields) + ")"


def section_body(msg: Message, path: str) -> bytes | None:
    node = msg
    for index in path.split("."):
        if not node.is_multipart():
            if index == "1" and node is msg:
                break
            return None
        children = node.get_payload()
        i = int(index) - 1
        if i >= len(children):
            return None
        node = children[i]
    payload = node.get_payload()
    if not isinstance(payload, str):
        return None
    return payload.encode("latin-1")


# ---------------------------------------------------------------------------
# ---------------------------------------------------------------------------
# Fake server
# ---------------------------------------------------------------------------

class FakeMessage:
    def __init__(self, uid: int, raw: bytes, received: date | None = None):
        self.uid = uid
        self.raw = raw
        self.received = received or date.today()
        self.parsed = message_from_bytes(raw)
        # Section overrides: path -> bytes returned for BODY[path].
        self.section_overrides: dict[str, bytes] = {}

    @property
    def header_block(self) -> bytes:
        end = self.raw.find(b"\r\n\r\n")
        return self.raw[: end + 4]


class FakeIMAPServer:
    """A mailbox plus a connector that hands out FakeIMAPClient connections."""

    def __init__(self, password: str = PASSWORD):
        self.password = password
        self.messages: list[FakeMessage] = []
        self.connections: list["FakeIMAPClient"] = []
        self.commands: list[tuple] = []
        self.fail_connect: Exception | None = None
        self.fail_search: bool = False

    def add(self, uid: int, raw: bytes, received: date | None = None) -> FakeMessage:
        message = FakeMessage(uid, raw, received)
        self.messages.append(message)
        return message

    def get(self, uid: int) -> FakeMessage | None:
        for message in self.messages:
            if message.uid == uid:
                return message
        return None

    def connect(self, host, port=None, ssl=True, ssl_context=None, timeout=None) -> "FakeIMAPClient":
        if self.fail_connect is not None:
            raise self.fail_connect
        client = FakeIMAPClient(self, host, port)
        self.connections.append(client)
        return client


class FakeIMAPClient:
    """The subset of imapclient.IMAPClient that MailSession calls."""

    def __init__(self, server: FakeIMAPServer, host: str, port: int):
        self.server = server
        self.host = host
        self.port = port
        self.logged_in = False
        self.logged_out = False
        self.selected: tuple[str, bool] | None = None

    def login(self, username, password):
        if password != self.server.password:
            raise LoginError("b'[AUTHENTICATIONFAILED] Invalid credentials'")
        self.logged_in = True
        return b"Logged in"

    def select_folder(self, folder, readonly=False):
        if folder != "INBOX":
            raise IMAPClientError("select failed: [NONEXISTENT] Unknown Mailbox")
        self.selected = (folder, readonly)
        return {b"EXISTS": len(self.server.messages), b"UIDVALIDITY": 1, b"READ-ONLY": [b""]}

    def close_folder(self):
        self.selected = None
        return b"Closed"

    def logout(self):
        self.logged_out = True
        return b"Logging out"

    def search(self, criteria="ALL"):
        criteria = [criteria] if isinstance(criteria, str) else list(criteria)
        self.server.commands.append(("SEARCH", tuple(criteria)))
        if self.server.fail_search:
            raise IMAPClientError("search failed: [CANNOT] Search failed")
        since = criteria[1] if criteria and criteria[0] == "SINCE" else None
        return [m.uid for m in self.server.messages if since is None or m.received >= since]

    def fetch(self, messages, data):
        self.server.commands.append(("FETCH", tuple(messages), tuple(data)))
        fragments = []
        for seq, uid in enumerate(messages, start=1):
            message = self.server.get(int(uid))
            if message is not None:
                fragments.extend(self._fetch_one(seq, message, data))
        # The same fragment shapes imaplib hands IMAPClient, parsed the same way.
        return parse_fetch_response(fragments) if fragments else {}

    def _section(self, message: FakeMessage, section: str) -> bytes | None:
        if section == "":
            return message.raw
        if section.startswith("HEADER"):
            return message.header_block
        return message.section_overrides.get(section, section_body(message.parsed, section))

    def _fetch_one(self, seq: int, message: FakeMessage, items: list[str]) -> list:
        fragments: list = []
        text = f"{seq} ("
        for item in items:
            sep = "" if text.endswith("(") else " "
            name = item.upper()
            if name == "BODYSTRUCTURE":
                text += f"{sep}BODYSTRUCTURE {render_bodystructure(message.parsed)}"
            elif name.startswith("BODY.PEEK[") and name.endswith("]"):
                section = name[len("BODY.PEEK["):-1]
                body = self._section(message, section)
                if body is None:
                    text += f"{sep}BODY[{section}] NIL"
                else:
                    fragments.append((f"{text}{sep}BODY[{section}] {{{len(body)}}}".encode(), body))
                    text = ""
            else:
                raise IMAPClientError(f"unsupported fetch item {item}")
        # Servers usually send the UID after the requested items.
        fragments.append(f"{text} UID {message.uid})".encode())
        return fragments


def parse_structure(text: str) -> MimeNode:
    """Part tree for BODYSTRUCTURE text, parsed by imapclient as in a real FETCH."""
    fetched = parse_fetch_response([f"1 (UID 1 BODYSTRUCTURE {text})".encode()])
    return parse_bodystructure(fetched[1][b"BODYSTRUCTURE"])


def structure_of(message: FakeMessage) -> MimeNode:
    return parse_structure(render_bodystructure(message.parsed))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def credentials() -> MailboxCredentials:
    return MailboxCredentials(provider="gmail", username="recruiter@example.com", password=PASSWORD)


@pytest.fixture()
def mail_server() -> FakeIMAPServer:
    return FakeIMAPServer()


@pytest.fixture()
def resume_pdf() -> bytes:
    return make_pdf("Jane Doe\nSenior Python Engineer\njane@example.com")


@pytest.fixture()
def populated_server(mail_server, resume_pdf) -> FakeIMAPServer:
    """
    Three messages:
      101  today, job application, text body + resume.PDF attachment
      102  10 days ago, nested multipart/alternative + two attachments
      103  40 days ago, single-part, no attachments
    """
    today = date.today()
    mail_server.add(
        101,
        build_message(
            "Application for Python Engineer",
            received=today,
            parts=[text_part("Please find my resume attached."), attachment_part("resume.PDF", resume_pdf)],
        ),
        received=today,
    )
    mail_server.add(
        102,
        build_message(
            "Hello there",
            sender="bob@example.com",
            received=today - timedelta(days=10),
            parts=[
                multipart([text_part("hi"), text_part("<p>hi</p>", "html")], "alt-boundary", "alternative"),
                attachment_part("photo.png", b"\x89PNG fake image", "image/png"),
                attachment_part("notes.txt", b"Plain notes", "text/plain", encoding="7bit"),
            ],
        ),
        received=today - timedelta(days=10),
    )
    mail_server.add(
        103,
        build_message("Lunch?", sender="Carol <carol@example.com>", received=today - timedelta(days=40), body="See you"),
        received=today - timedelta(days=40),
    )
    return mail_server


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------

class InMemoryStore:
    """CandidateStore keeping records in a dict keyed by id."""

    def __init__(self):
        self.records: dict[str, CandidateRecord] = {}
        self.lookups: list[str] = []

    def find_by_email(self, email: str) -> Optional[CandidateRecord]:
        self.lookups.append(email)
        for record in self.records.values():
            if record.email == email:
                return record.model_copy(deep=True)
        return None

    def upsert(self, record: CandidateRecord) -> UpsertResult:
        created = record.id is None
        record_id = record.id or uuid.uuid4().hex
        self.records[record_id] = record.model_copy(update={"id": record_id}, deep=True)
        return UpsertResult(id=record_id, created=created, updated=not created)


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()
