"""
Operation translator.

Each public method of :class:`MailOperations` is one abstract mailbox
operation.  It selects the folder it works on (selection is never reused
between operations), issues the IMAP commands in order over the session's
connection and turns the responses into model values.  Failures surface as
:class:`ProtocolError` (the server said no) or :class:`MailConnectionError`
(the link went away); nothing is retried here.
"""

from __future__ import annotations

import datetime as dt
import imaplib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from mail_errors import DecodeError, MailConnectionError, ProtocolError, ValidationError
from mail_models import Folder, FolderStats, MailboxStatus, Message, SearchCriteria
from mail_session import MailSession
from mailbox_names import decode_mailbox, quote_mailbox
from message_decoder import decode_message

log = logging.getLogger(__name__)

SEEN = "\\Seen"
FLAGGED = "\\Flagged"
DELETED = "\\Deleted"

FETCH_ITEMS = "(UID FLAGS BODY.PEEK[])"
DEFAULT_DELIMITER = "/"

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_LIST_RE = re.compile(r'^\((?P<flags>[^)]*)\) (?:"(?P<delim>(?:\\.|[^"])*)"|NIL) (?P<name>.*)$', re.IGNORECASE)
_UID_RE = re.compile(r"\bUID (\d+)")
_FLAGS_RE = re.compile(r"\bFLAGS \(([^)]*)\)")
_UNTAGGED_FETCH_RE = re.compile(r"^\d+ \(")

SearchTerm = Union[str, bytes]


# ---------------------------------------------------------------------------
#  Folder tree
# ---------------------------------------------------------------------------

@dataclass
class MailboxNode:
    """One level of the server's folder hierarchy."""

    delimiter: str = DEFAULT_DELIMITER
    attributes: List[str] = field(default_factory=list)
    children: Dict[str, "MailboxNode"] = field(default_factory=dict)


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def parse_list_line(line: Union[bytes, Tuple[bytes, bytes]]) -> Optional[Dict[str, Any]]:
    """
    Parse a single result line from the IMAP LIST command into a
    dictionary with flags, delimiter and (still encoded) mailbox name.
    """
    if isinstance(line, tuple):
        # Name sent as a literal: (b'(\\HasNoChildren) "/" {7}', b'Archive')
        head = re.sub(r"\{\d+\}$", "", _text(line[0])).rstrip()
        text = f"{head} {_text(line[1])}"
    else:
        text = _text(line)
    m = _LIST_RE.match(text.strip())
    if not m:
        return None
    flags_raw = m.group("flags").strip()
    delimiter = m.group("delim")
    if delimiter is None:
        delimiter = ""
    delimiter = delimiter.replace("\\\\", "\\").replace('\\"', '"')
    name = m.group("name").strip()
    # strip surrounding quotes from the mailbox name
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return {"name": name, "delimiter": delimiter, "flags": flags_raw.split() if flags_raw else []}


def _decoded_name(name: str) -> str:
    try:
        return decode_mailbox(name)
    except UnicodeError:
        return name


def build_folder_tree(entries: Iterable[Dict[str, Any]]) -> Dict[str, MailboxNode]:
    """
    Rebuild the hierarchy from flat LIST entries.  Sibling order follows the
    order in which the server first mentioned each name; parents the server
    did not list themselves are created with no attributes.
    """
    tree: Dict[str, MailboxNode] = {}
    for entry in entries:
        delimiter = entry.get("delimiter") or ""
        full_name = _decoded_name(entry["name"])
        parts = full_name.split(delimiter) if delimiter else [full_name]
        level = tree
        node: Optional[MailboxNode] = None
        for part in parts:
            node = level.get(part)
            if node is None:
                node = MailboxNode(delimiter=delimiter or DEFAULT_DELIMITER)
                level[part] = node
            level = node.children
        if node is not None:
            node.attributes = list(entry.get("flags") or [])
    return tree


def flatten_folders(tree: Dict[str, MailboxNode], prefix: str = "") -> List[Folder]:
    """Pre-order walk: each folder precedes its children."""
    folders: List[Folder] = []
    for name, node in tree.items():
        path = prefix + name
        folders.append(Folder(name=name, path=path, delimiter=node.delimiter, attributes=list(node.attributes)))
        if node.children:
            folders.extend(flatten_folders(node.children, path + node.delimiter))
    return folders


# ---------------------------------------------------------------------------
#  Search criteria
# ---------------------------------------------------------------------------

def imap_date(value: str) -> str:
    """
    Render an ISO date (``2024-03-01`` or a full ISO timestamp) in the
    ``01-Mar-2024`` form IMAP SEARCH expects.
    """
    text = (value or "").strip()
    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        try:
            parsed = dt.date.fromisoformat(text[:10])
        except ValueError:
            raise ValidationError(f"Invalid date {value!r}; expected YYYY-MM-DD") from None
    return f"{parsed.day:02d}-{_MONTHS[parsed.month - 1]}-{parsed.year}"


def _quote_string(value: str) -> SearchTerm:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    quoted = f'"{escaped}"'
    if quoted.isascii():
        return quoted
    return quoted.encode("utf-8")


def build_search_terms(criteria: SearchCriteria) -> Tuple[Optional[str], List[SearchTerm]]:
    """
    Translate ``criteria`` into ``(charset, terms)`` for ``UID SEARCH``.

    Terms appear in a fixed order: sender, recipient, subject, body,
    since, before, seen, flagged.  With no predicate the single term is
    ``ALL``.  ``charset`` is ``"UTF-8"`` only when a text term needs it.
    """
    terms: List[SearchTerm] = []
    for keyword, value in (
        ("FROM", criteria.sender),
        ("TO", criteria.recipient),
        ("SUBJECT", criteria.subject),
        ("BODY", criteria.body),
    ):
        if value is not None:
            terms.extend([keyword, _quote_string(value)])
    if criteria.since is not None:
        terms.extend(["SINCE", imap_date(criteria.since)])
    if criteria.before is not None:
        terms.extend(["BEFORE", imap_date(criteria.before)])
    if criteria.seen is not None:
        terms.append("SEEN" if criteria.seen else "UNSEEN")
    if criteria.flagged is not None:
        terms.append("FLAGGED" if criteria.flagged else "UNFLAGGED")
    if not terms:
        return None, ["ALL"]
    charset = "UTF-8" if any(isinstance(t, bytes) for t in terms) else None
    return charset, terms


def uid_set(uids: Sequence[int]) -> str:
    return ",".join(str(int(u)) for u in uids)


def parse_uid_list(data: Sequence[Any]) -> List[int]:
    uids: List[int] = []
    for chunk in data or []:
        if not chunk:
            continue
        uids.extend(int(tok) for tok in _text(chunk).split() if tok.isdigit())
    return uids


def iter_fetch_response(data: Sequence[Any]) -> Iterator[Tuple[Optional[int], List[str], bytes]]:
    """
    Yield ``(uid, flags, raw)`` per message in the order the server sent
    them.  Attributes may appear before or after the body literal, so
    trailing fragments are folded into the preceding record.
    """
    records: List[List[Any]] = []
    for part in data or []:
        if isinstance(part, tuple):
            records.append([_text(part[0]), bytes(part[1] or b"")])
        elif isinstance(part, (bytes, bytearray)):
            text = _text(part)
            if _UNTAGGED_FETCH_RE.match(text) or not records:
                records.append([text, b""])
            else:
                records[-1][0] += " " + text
    for prefix, raw in records:
        m_uid = _UID_RE.search(prefix)
        m_flags = _FLAGS_RE.search(prefix)
        yield (
            int(m_uid.group(1)) if m_uid else None,
            m_flags.group(1).split() if m_flags else [],
            raw,
        )


def _response_text(data: Any) -> str:
    if not data:
        return ""
    return " ".join(_text(d) for d in data if d is not None).strip()


# ---------------------------------------------------------------------------
#  Operations
# ---------------------------------------------------------------------------

class MailOperations:
    """Abstract mailbox operations over one :class:`MailSession`."""

    def __init__(self, session: MailSession) -> None:
        self.session = session

    def _call(self, command: str, method: str, *args: Any, **kwargs: Any) -> List[Any]:
        conn = self.session.connection
        try:
            typ, data = getattr(conn, method)(*args, **kwargs)
        except imaplib.IMAP4.readonly as exc:
            raise ProtocolError(command, str(exc)) from exc
        except (imaplib.IMAP4.abort, OSError) as exc:
            self.session.invalidate()
            raise MailConnectionError(f"Connection lost during {command}: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise ProtocolError(command, str(exc)) from exc
        if typ != "OK":
            raise ProtocolError(command, _response_text(data))
        return list(data or [])

    def _select(self, folder: str, readonly: bool = False) -> MailboxStatus:
        data = self._call("EXAMINE" if readonly else "SELECT", "select", quote_mailbox(folder), readonly=readonly)
        total = parse_uid_list(data[:1])
        _, recent = self.session.connection.response("RECENT")
        recent_count = parse_uid_list(recent[-1:]) if recent else []
        log.debug("Selected %s (readonly=%s)", folder, readonly)
        return MailboxStatus(
            name=folder,
            total=total[0] if total else 0,
            recent=recent_count[0] if recent_count else 0,
        )

    def _store(self, uids: Sequence[int], op: str, flag: str) -> None:
        self._call("STORE", "uid", "STORE", uid_set(uids), op, f"({flag})")

    # -- folders -----------------------------------------------------------

    def list_folders(self) -> List[Folder]:
        data = self._call("LIST", "list")
        entries = []
        for line in data:
            if line is None:
                continue
            entry = parse_list_line(line)
            if entry is None:
                log.debug("Skipping unparseable LIST line: %r", line)
                continue
            entries.append(entry)
        return flatten_folders(build_folder_tree(entries))

    def create_folder(self, name: str) -> None:
        self._call("CREATE", "create", quote_mailbox(name))
        log.info("Created folder %s", name)

    def delete_folder(self, name: str) -> None:
        self._call("DELETE", "delete", quote_mailbox(name))
        log.info("Deleted folder %s", name)

    def folder_status(self, folder: Folder) -> FolderStats:
        status = self._select(folder.path, readonly=True)
        unseen = parse_uid_list(self._call("SEARCH", "uid", "SEARCH", "UNSEEN"))
        return FolderStats(
            name=folder.name,
            path=folder.path,
            total=status.total,
            unread=len(unseen),
            recent=status.recent,
        )

    # -- messages ----------------------------------------------------------

    def search(self, criteria: SearchCriteria) -> List[Message]:
        # read-write: the caller may act on the returned uids right away
        self._select(criteria.folder)
        charset, terms = build_search_terms(criteria)
        prefix: List[SearchTerm] = ["CHARSET", charset] if charset else []
        uids = parse_uid_list(self._call("SEARCH", "uid", "SEARCH", *prefix, *terms))
        if not uids:
            return []
        selected = uids[: criteria.limit]
        log.debug("Fetching %d of %d matches from %s", len(selected), len(uids), criteria.folder)
        data = self._call("FETCH", "uid", "FETCH", uid_set(selected), FETCH_ITEMS)
        messages: List[Message] = []
        for uid, flags, raw in iter_fetch_response(data):
            if uid is None:
                log.warning("Dropping fetched message without UID in %s", criteria.folder)
                continue
            try:
                decoded = decode_message(raw)
            except DecodeError as exc:
                log.warning("Dropping message %s in %s: %s", uid, criteria.folder, exc)
                continue
            messages.append(Message(
                uid=uid,
                subject=decoded.subject,
                sender=decoded.sender,
                to=decoded.to,
                date=decoded.date,
                body=decoded.body,
                folder=criteria.folder,
                seen=SEEN in flags,
                flagged=FLAGGED in flags,
            ))
        return messages

    def move(self, uid: int, source: str, destination: str) -> None:
        self._select(source)
        if "MOVE" in self.session.capabilities:
            self._call("MOVE", "uid", "MOVE", uid_set([uid]), quote_mailbox(destination))
        else:
            self._call("COPY", "uid", "COPY", uid_set([uid]), quote_mailbox(destination))
            self._store([uid], "+FLAGS", DELETED)
            if "UIDPLUS" in self.session.capabilities:
                # only the moved message, not every \Deleted one in the folder
                self._call("EXPUNGE", "uid", "EXPUNGE", uid_set([uid]))
            else:
                self._call("EXPUNGE", "expunge")
        log.info("Moved message %s from %s to %s", uid, source, destination)

    def mark_read(self, uid: int, folder: str) -> None:
        self._select(folder)
        self._store([uid], "+FLAGS", SEEN)

    def mark_unread(self, uid: int, folder: str) -> None:
        self._select(folder)
        self._store([uid], "-FLAGS", SEEN)

    def delete(self, uid: int, folder: str) -> None:
        self.batch_delete([uid], folder)

    def batch_delete(self, uids: Sequence[int], folder: str) -> None:
        # Not atomic: a crash after STORE leaves the messages flagged
        # \Deleted until the next expunge.
        self._select(folder)
        self._store(uids, "+FLAGS", DELETED)
        self._call("EXPUNGE", "expunge")
        log.info("Deleted %d message(s) from %s", len(uids), folder)
