"""
Async IMAP session over the blocking imapclient transport.

A MailSession is one authenticated TLS connection. Every IMAPClient call runs
in a worker thread behind an asyncio.Lock, so at most one top-level command is
in flight per session. Callers that want parallel mailbox access open more
sessions.

IMAPClient works in UID mode: search() returns UIDs and fetch() returns
``{uid: {b'BODYSTRUCTURE': BodyData, b'BODY[2]': bytes, ...}}``.

Typical use:

    async with open_session(credentials) as session:
        uids = await session.uid_search("SINCE", today)
        items = await session.uid_fetch(uids, ["BODYSTRUCTURE"])

Errors:
  auth / network / TLS / protocol failures  -> MailConnectionError
  mailbox cannot be selected                -> MailboxError
  SEARCH rejected (NO/BAD)                  -> SearchError
"""

import asyncio
import logging
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, Optional, Sequence, Union

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from app import config
from app.errors import MailboxError, MailConnectionError, SearchError
from app.models.mail import MailboxCredentials

logger = logging.getLogger(__name__)


def _ssl_context(validate: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not validate:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def fetched_body(item: Optional[dict], section: str = "") -> Optional[bytes]:
    """Return the ``BODY[<section>]`` value of one fetched message, if present."""
    if item is None:
        return None
    return item.get(f"BODY[{section}]".encode("ascii"))


@dataclass
class MailboxInfo:
    name: str
    exists: int
    readonly: bool


class MailSession:
    """
    One authenticated IMAP connection.

    Args:
        credentials:            Mailbox login details.
        connector:              Client factory called as
                                ``connector(host, port=..., ssl=True, ssl_context=..., timeout=...)``.
                                Defaults to ``imapclient.IMAPClient``.
        validate_certificates:  Defaults to config.IMAP_VALIDATE_CERTIFICATES.
        timeout:                Socket timeout in seconds; None waits forever.
    """

    def __init__(
        self,
        credentials: MailboxCredentials,
        connector: Optional[Callable[..., IMAPClient]] = None,
        validate_certificates: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.credentials = credentials
        self._connector = connector or IMAPClient
        self._validate = (
            config.IMAP_VALIDATE_CERTIFICATES
            if validate_certificates is None
            else validate_certificates
        )
        self._timeout = timeout if timeout is not None else config.IMAP_TIMEOUT_SECONDS
        self._client: Optional[IMAPClient] = None
        self._lock = asyncio.Lock()
        self.mailbox: Optional[MailboxInfo] = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def _call(self, func: Callable, *args):
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    def _require_client(self) -> IMAPClient:
        if self._client is None:
            raise MailConnectionError("Mail session is not open")
        return self._client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> "MailSession":
        host, port = self.credentials.resolve_endpoint()
        username = self.credentials.username
        password = self.credentials.password.get_secret_value()

        def _connect() -> IMAPClient:
            client = self._connector(
                host,
                port=port,
                ssl=True,
                ssl_context=_ssl_context(self._validate),
                timeout=self._timeout,
            )
            try:
                client.login(username, password)
            except Exception:
                try:
                    client.logout()
                except (IMAPClientError, OSError):
                    pass
                raise
            return client

        logger.info(f"Connecting to {host}:{port} as {username}")
        try:
            self._client = await self._call(_connect)
        except (IMAPClientError, OSError) as exc:
            logger.warning(f"IMAP connection to {host}:{port} failed: {exc}")
            raise MailConnectionError(f"Could not connect to {host}:{port}: {exc}") from exc
        return self

    async def close(self) -> None:
        """Best-effort CLOSE + LOGOUT. Safe to call repeatedly or after errors."""
        client = self._client
        if client is None:
            return
        self._client = None
        selected = self.mailbox is not None
        self.mailbox = None

        def _shutdown() -> None:
            if selected:
                try:
                    client.close_folder()
                except (IMAPClientError, OSError) as exc:
                    logger.debug(f"IMAP CLOSE failed: {exc}")
            try:
                client.logout()
            except (IMAPClientError, OSError) as exc:
                logger.debug(f"IMAP LOGOUT failed: {exc}")

        await self._call(_shutdown)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def select_mailbox(
        self, name: str = config.DEFAULT_MAILBOX, readonly: bool = True
    ) -> MailboxInfo:
        client = self._require_client()
        try:
            info = await self._call(client.select_folder, name, readonly)
        except IMAPClientAbortError as exc:
            raise MailConnectionError(f"Connection lost selecting {name}: {exc}") from exc
        except IMAPClientError as exc:
            raise MailboxError(f"Could not select mailbox {name}: {exc}") from exc
        except OSError as exc:
            raise MailConnectionError(f"Connection lost selecting {name}: {exc}") from exc

        try:
            exists = int(info.get(b"EXISTS", 0))
        except (TypeError, ValueError):
            exists = 0
        self.mailbox = MailboxInfo(name=name, exists=exists, readonly=readonly)
        logger.debug(f"Selected {name} ({exists} messages, readonly={readonly})")
        return self.mailbox

    async def uid_search(self, *criteria) -> list[int]:
        """
        Run ``UID SEARCH`` and return matching UIDs in server order.

        Criteria go to IMAPClient.search() as a list, so dates may be passed
        as ``datetime.date`` values.
        """
        client = self._require_client()
        try:
            uids = await self._call(client.search, list(criteria) or ["ALL"])
        except IMAPClientAbortError as exc:
            raise MailConnectionError(f"Connection lost during search: {exc}") from exc
        except IMAPClientError as exc:
            raise SearchError(f"Search rejected: {exc}") from exc
        except OSError as exc:
            raise MailConnectionError(f"Connection lost during search: {exc}") from exc
        return [int(uid) for uid in uids]

    async def uid_fetch(
        self, uids: Union[int, Iterable[int]], items: Sequence[str]
    ) -> dict[int, dict]:
        """
        Run ``UID FETCH`` and return ``{uid: {item: value}}``.

        ``items`` lists the data items, e.g. ``["BODY.PEEK[2]"]``. Item keys in
        the result are bytes as the server names them (``b"BODY[2]"``); UIDs
        the server did not return are absent.
        """
        client = self._require_client()
        uid_list = [uids] if isinstance(uids, int) else list(uids)
        try:
            return await self._call(client.fetch, uid_list, list(items))
        except (IMAPClientError, OSError) as exc:
            raise MailConnectionError(f"FETCH {' '.join(items)} failed: {exc}") from exc


@asynccontextmanager
async def open_session(
    credentials: MailboxCredentials,
    mailbox: Optional[str] = config.DEFAULT_MAILBOX,
    readonly: bool = True,
    connector: Optional[Callable[..., IMAPClient]] = None,
) -> AsyncIterator[MailSession]:
    """Open a session, select ``mailbox`` (unless None), and always close it."""
    session = MailSession(credentials, connector=connector)
    await session.open()
    try:
        if mailbox:
            await session.select_mailbox(mailbox, readonly=readonly)
        yield session
    finally:
        await session.close()
