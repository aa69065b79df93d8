"""
IMAP mailbox client for Gmail.

Wraps aioimaplib with XOAUTH2 login and exposes:
- connect / open_folder / fetch_range / fetch_by_uid / list_folders / close
  (low level, one session per call site)
- fetch_emails / fetch_email_by_uid / get_folders
  (high level, open-use-close in a single call)

Every high-level call opens its own connection and closes it on all exit
paths; sessions are never pooled or shared between requests.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import aioimaplib

from app.exceptions import FolderError, MailboxConnectionError, MailboxNotFoundError
from app.logging_config import get_logger
from app.services.message_normalizer import (
    FALLBACK_SYNTHETIC,
    RawMessage,
    normalize_message,
)

logger = get_logger(__name__)

# BODY.PEEK keeps the server from setting \Seen on fetch
FETCH_ITEMS = "(UID FLAGS BODY.PEEK[])"

# Folder trees deeper than this are not walked
MAX_FOLDER_DEPTH = 32

_FETCH_LINE = re.compile(rb"^(\d+) FETCH \(")
_UID = re.compile(rb"UID (\d+)")
_FLAGS = re.compile(rb"FLAGS \(([^)]*)\)")
_EXISTS = re.compile(rb"^(\d+) EXISTS")
_UIDVALIDITY = re.compile(rb"UIDVALIDITY (\d+)")
_LIST_LINE = re.compile(rb'^\((?P<flags>[^)]*)\) (?P<delimiter>"(?:[^"\\]|\\.)*"|NIL) (?P<name>.+)$')


@dataclass
class FolderInfo:
    name: str
    total: int
    uid_validity: Optional[int] = None


@dataclass
class FetchResult:
    emails: list
    total: int


def compute_window(total: int, limit: int, offset: int = 0) -> tuple[int, int]:
    """
    Sequence range of the newest `limit` messages, skipping `offset` from the end.

    Returns (start, end); start > end means there is nothing to fetch.
    """
    start = max(1, total - offset - limit + 1)
    end = max(1, total - offset)
    return start, end


def quote_mailbox(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def _apply_attributes(message: RawMessage, line: bytes) -> None:
    uid_match = _UID.search(line)
    if uid_match and message.uid is None:
        message.uid = int(uid_match.group(1))
    flags_match = _FLAGS.search(line)
    if flags_match and not message.flags:
        message.flags = flags_match.group(1).decode("ascii", errors="replace").split()


def parse_fetch_response(lines: list) -> list[RawMessage]:
    """
    Group aioimaplib FETCH response lines into RawMessage records.

    Message literals arrive as bytearray items right after their
    "<seq> FETCH (" line; attribute lines are bytes.
    """
    messages = []
    current = None
    for line in lines:
        if isinstance(line, bytearray):
            if current is not None:
                current.raw = bytes(line)
            continue
        if isinstance(line, str):
            line = line.encode()
        match = _FETCH_LINE.match(line)
        if match:
            current = RawMessage(seq=int(match.group(1)), uid=None)
            messages.append(current)
        if current is not None:
            _apply_attributes(current, line)
    return messages


def parse_list_response(lines: list) -> list[dict]:
    """Parse LIST response lines into flat folder descriptors (LIST order)."""
    folders = []
    for line in lines:
        if isinstance(line, bytearray):
            continue
        if isinstance(line, str):
            line = line.encode()
        match = _LIST_LINE.match(line)
        if not match:
            continue
        delimiter = match.group("delimiter").decode()
        folders.append({
            "full_name": _unquote(match.group("name").decode("utf-8", errors="replace")),
            "delimiter": None if delimiter == "NIL" else _unquote(delimiter),
            "flags": match.group("flags").decode().split(),
        })
    return folders


def build_folder_tree(entries: list[dict], max_depth: int = MAX_FOLDER_DEPTH) -> list[dict]:
    """
    Order folders depth-first (parents before children) and annotate depth.

    The hierarchy comes from splitting full names on each folder's delimiter.
    Walked with an explicit stack; entries below max_depth are skipped.
    """
    by_name = {entry["full_name"]: entry for entry in entries}
    children = {}
    roots = []
    for entry in entries:
        delimiter = entry["delimiter"]
        full_name = entry["full_name"]
        parent = None
        if delimiter and delimiter in full_name:
            parent = full_name.rsplit(delimiter, 1)[0]
        if parent in by_name and parent != full_name:
            children.setdefault(parent, []).append(entry)
        else:
            roots.append(entry)

    ordered = []
    visited = set()
    stack = [(entry, 0) for entry in reversed(roots)]
    while stack:
        entry, depth = stack.pop()
        full_name = entry["full_name"]
        if full_name in visited:
            continue
        visited.add(full_name)
        if depth > max_depth:
            logger.warning("Skipping folder %s: deeper than %s levels", full_name, max_depth)
            continue

        delimiter = entry["delimiter"]
        name = full_name.rsplit(delimiter, 1)[-1] if delimiter else full_name
        ordered.append({
            "name": name,
            "full_name": full_name,
            "delimiter": delimiter,
            "flags": entry["flags"],
            "depth": depth,
        })
        for child in reversed(children.get(full_name, [])):
            stack.append((child, depth + 1))
    return ordered


def _sort_newest_first(emails: list[dict]) -> list[dict]:
    return sorted(
        emails,
        key=lambda e: e.get("received_at") or datetime.min,
        reverse=True
    )


class MailboxClient:
    """
    Gmail IMAP client.

    Construct once at startup and share; it holds configuration only.
    `client_factory` builds the underlying aioimaplib connection and is
    replaced with a fake in tests.
    """

    def __init__(
        self,
        host: str = "imap.gmail.com",
        port: int = 993,
        timeout: int = 30,
        client_factory: Callable = None,
        fallback_ids: str = FALLBACK_SYNTHETIC,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.client_factory = client_factory or aioimaplib.IMAP4_SSL
        self.fallback_ids = fallback_ids

    # ============ SESSION ============

    async def connect(self, email: str, access_token: str):
        """
        Open an authenticated IMAP session using XOAUTH2.

        Raises:
            MailboxConnectionError: handshake or login failed (not retried)
        """
        logger.info("Connecting to IMAP server %s:%s as %s", self.host, self.port, email)
        try:
            session = self.client_factory(host=self.host, port=self.port, timeout=self.timeout)
            await session.wait_hello_from_server()
        except (OSError, asyncio.TimeoutError, aioimaplib.Abort, aioimaplib.CommandTimeout) as e:
            raise MailboxConnectionError(f"Could not reach {self.host}: {e}") from e

        try:
            response = await session.xoauth2(email.strip(), access_token)
        except (OSError, asyncio.TimeoutError, aioimaplib.Abort, aioimaplib.CommandTimeout) as e:
            await self.close(session)
            raise MailboxConnectionError(f"IMAP login failed: {e}") from e

        if response.result != "OK":
            await self.close(session)
            detail = b" ".join(bytes(line) for line in response.lines).decode("utf-8", errors="replace")
            raise MailboxConnectionError(
                f"AUTHENTICATIONFAILED: {detail or 'XOAUTH2 rejected'}",
                auth_failed=True
            )

        logger.info("IMAP connection established for %s", email)
        return session

    async def close(self, session) -> None:
        """Log out; failures here never mask the caller's own error."""
        if session is None:
            return
        try:
            await session.logout()
        except (OSError, asyncio.TimeoutError, aioimaplib.Abort, aioimaplib.CommandTimeout) as e:
            logger.warning("Error closing IMAP session: %s", e)

    # ============ FOLDERS ============

    async def open_folder(self, session, folder: str = "INBOX", read_only: bool = True) -> FolderInfo:
        """
        EXAMINE (read-only) or SELECT a folder.

        Raises:
            FolderError: folder missing or not selectable
        """
        command = session.examine if read_only else session.select
        response = await command(quote_mailbox(folder))
        if response.result != "OK":
            logger.error("Error opening %s: %s", folder, response.lines)
            raise FolderError(f"Cannot open folder {folder}")

        total = 0
        uid_validity = None
        for line in response.lines:
            if isinstance(line, bytearray):
                continue
            exists = _EXISTS.match(line)
            if exists:
                total = int(exists.group(1))
            validity = _UIDVALIDITY.search(line)
            if validity:
                uid_validity = int(validity.group(1))
        return FolderInfo(name=folder, total=total, uid_validity=uid_validity)

    async def list_folders(self, session) -> list[dict]:
        response = await session.list('""', "*")
        if response.result != "OK":
            raise FolderError("Cannot list folders")
        return build_folder_tree(parse_list_response(response.lines))

    # ============ FETCH ============

    async def fetch_range(self, session, start: int, end: int) -> list[RawMessage]:
        """Fetch sequence numbers start..end (inclusive); empty when start > end."""
        if start > end:
            return []
        response = await session.fetch(f"{start}:{end}", FETCH_ITEMS)
        if response.result != "OK":
            raise FolderError(f"FETCH {start}:{end} failed")
        return parse_fetch_response(response.lines)

    async def fetch_by_uid(self, session, uid: int) -> RawMessage:
        """
        Raises:
            MailboxNotFoundError: the UID does not exist in the open folder
        """
        response = await session.uid("fetch", str(uid), FETCH_ITEMS)
        messages = [m for m in parse_fetch_response(response.lines) if m.raw]
        if response.result != "OK" or not messages:
            raise MailboxNotFoundError(f"Message UID {uid} not found")
        message = messages[0]
        if message.uid is None:
            message.uid = uid
        return message

    # ============ HIGH LEVEL ============

    async def fetch_emails(
        self,
        email: str,
        access_token: str,
        folder: str = "INBOX",
        limit: int = 20,
        offset: int = 0
    ) -> FetchResult:
        """
        Fetch the newest `limit` messages of a folder, normalized, newest first.

        `total` is the folder size at fetch time, independent of how many
        messages were returned.
        """
        session = await self.connect(email, access_token)
        try:
            box = await self.open_folder(session, folder, read_only=True)
            if box.total == 0:
                return FetchResult(emails=[], total=0)

            start, end = compute_window(box.total, limit, offset)
            raw_messages = await self.fetch_range(session, start, end)
            emails = [
                normalize_message(raw, folder=folder, fallback_ids=self.fallback_ids)
                for raw in raw_messages
            ]
            logger.info("Fetched %s messages from %s (%s total)", len(emails), folder, box.total)
            return FetchResult(emails=_sort_newest_first(emails), total=box.total)
        finally:
            await self.close(session)

    async def fetch_email_by_uid(
        self,
        email: str,
        access_token: str,
        uid: int,
        folder: str = "INBOX"
    ) -> dict:
        """Fetch and normalize one message live from the server."""
        session = await self.connect(email, access_token)
        try:
            await self.open_folder(session, folder, read_only=True)
            raw = await self.fetch_by_uid(session, uid)
            return normalize_message(raw, folder=folder, fallback_ids=self.fallback_ids)
        finally:
            await self.close(session)

    async def get_folders(self, email: str, access_token: str) -> list[dict]:
        session = await self.connect(email, access_token)
        try:
            return await self.list_folders(session)
        finally:
            await self.close(session)
