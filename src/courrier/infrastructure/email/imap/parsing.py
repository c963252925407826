"""Parsing helpers for raw imaplib responses."""

from __future__ import annotations
import re
from typing import Optional, Sequence, Union

from imapclient import imap_utf7

from courrier.application.ports.mail_session import ListEntry
from courrier.domain.errors import ProtocolError

ResponseItem = Union[bytes, tuple, None]

_LIST_RE = re.compile(
    rb'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s*(?P<name>.*)$',
    re.IGNORECASE,
)
_LITERAL_RE = re.compile(rb"\{\d+\}$")
_UID_LINE_RE = re.compile(rb"\bUID\s+(\d+)")


def _unquote(raw: bytes) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw.startswith(b'"') and raw.endswith(b'"'):
        raw = re.sub(rb'\\(["\\])', rb"\1", raw[1:-1])
    return raw.decode("utf-8", errors="replace")


def parse_list_response(data: Sequence[ResponseItem]) -> list[ListEntry]:
    """Parse the data half of ``IMAP4.list()``.

    Names sent as literals arrive from imaplib as ``(prefix, literal)`` tuples;
    plain lines arrive as bytes.
    """
    entries: list[ListEntry] = []
    for item in data:
        if item is None:
            continue
        literal: Optional[bytes] = None
        if isinstance(item, tuple):
            line, literal = item[0], item[1]
        else:
            line = item
        m = _LIST_RE.match(line.strip())
        if not m:
            raise ProtocolError(f"Unparseable LIST line: {line!r}")

        flags = tuple(f.decode("ascii", errors="replace") for f in m.group("flags").split())
        delim_raw = m.group("delim")
        delimiter = None if delim_raw.upper() == b"NIL" else _unquote(delim_raw)

        if literal is not None and _LITERAL_RE.search(m.group("name")):
            name = literal.decode("utf-8", errors="replace")
        else:
            name = _unquote(m.group("name"))
        entries.append(ListEntry(flags=flags, delimiter=delimiter, name=name))
    return entries


def parse_uid_search(data: Sequence[ResponseItem]) -> list[int]:
    uids: list[int] = []
    for item in data:
        if not item or isinstance(item, tuple):
            continue
        uids.extend(int(x) for x in item.split())
    return sorted(uids)


def extract_message_body(data: Sequence[ResponseItem], uid: int) -> Optional[bytes]:
    """Return the literal attached to the FETCH response for ``uid``, if any."""
    bodies = [item for item in data if isinstance(item, tuple) and len(item) >= 2]
    for prefix, body in bodies:
        m = _UID_LINE_RE.search(prefix)
        if m is None or int(m.group(1)) == uid:
            return body
    return None


def quote_mailbox(name: str) -> str:
    # imaplib sends mailbox arguments verbatim
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def decode_modified_utf7(name: str) -> str:
    """Decode an RFC 3501 modified UTF-7 mailbox name ('&AOk-t&AOk-' -> 'été').

    Names that are not ASCII were sent as UTF-8 and are returned unchanged,
    as are names that are not canonical modified UTF-7.
    """
    if not name.isascii():
        return name
    raw = name.encode("ascii")
    try:
        decoded = imap_utf7.decode(raw)
    except (ValueError, UnicodeError):
        return name
    if imap_utf7.encode(decoded) != raw:
        return name
    return decoded
