"""
Transient records built from live IMAP responses.

Nothing here is persisted; each tool call constructs these values, renders
them with ``to_dict()`` and throws them away.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_FOLDER = "INBOX"
DEFAULT_LIMIT = 50


@dataclass
class Folder:
    name: str
    path: str
    delimiter: str = "/"
    attributes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchCriteria:
    """
    Predicates for ``search_emails``.  ``None`` means "not constrained";
    with every predicate unset the search matches the whole folder.
    """

    folder: str = DEFAULT_FOLDER
    sender: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    since: Optional[str] = None
    before: Optional[str] = None
    seen: Optional[bool] = None
    flagged: Optional[bool] = None
    limit: int = DEFAULT_LIMIT

    def has_predicates(self) -> bool:
        return any(
            value is not None
            for value in (
                self.sender, self.recipient, self.subject, self.body,
                self.since, self.before, self.seen, self.flagged,
            )
        )


@dataclass
class Message:
    uid: int
    subject: str
    sender: str
    to: List[str]
    date: str
    body: str
    folder: str
    seen: bool
    flagged: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "subject": self.subject,
            "from": self.sender,
            "to": list(self.to),
            "date": self.date,
            "body": self.body,
            "folder": self.folder,
            "seen": self.seen,
            "flagged": self.flagged,
        }


@dataclass
class MailboxStatus:
    """Counters reported when a mailbox is selected."""

    name: str
    total: int
    recent: int = 0


@dataclass
class FolderStats:
    name: str
    path: str
    total: int
    unread: int
    recent: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "totalCount": self.total,
            "unreadCount": self.unread,
            "recentCount": self.recent,
        }


@dataclass
class AccountStats:
    """
    Aggregate over a bounded set of folders.

    ``flagged_emails``, ``top_senders`` and the day-window counters are part
    of the reported shape but are never computed; they stay zero/empty.
    """

    total_emails: int = 0
    unread_emails: int = 0
    read_emails: int = 0
    flagged_emails: int = 0
    folders: List[FolderStats] = field(default_factory=list)
    top_senders: List[Dict[str, Any]] = field(default_factory=list)
    emails_last_30_days: int = 0
    emails_last_7_days: int = 0
    average_emails_per_day: float = 0.0

    def add(self, folder: FolderStats) -> None:
        self.folders.append(folder)
        self.total_emails += folder.total
        self.unread_emails += folder.unread
        self.read_emails += folder.total - folder.unread

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalEmails": self.total_emails,
            "unreadEmails": self.unread_emails,
            "readEmails": self.read_emails,
            "flaggedEmails": self.flagged_emails,
            "folders": [f.to_dict() for f in self.folders],
            "topSenders": list(self.top_senders),
            "emailsLast30Days": self.emails_last_30_days,
            "emailsLast7Days": self.emails_last_7_days,
            "averageEmailsPerDay": self.average_emails_per_day,
        }

    def summary(self) -> str:
        lines = [
            "Email statistics:",
            f"Total: {self.total_emails} emails",
            f"Unread: {self.unread_emails}",
            f"Read: {self.read_emails}",
            "",
            f"Folders ({len(self.folders)}):",
        ]
        lines.extend(f"- {f.name}: {f.total} ({f.unread} unread)" for f in self.folders)
        return "\n".join(lines)
