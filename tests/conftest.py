import os
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

os.environ.setdefault("EMAIL_ADDRESS", "test@example.com")
os.environ.setdefault("EMAIL_PASSWORD", "password123")

from mail_operations import MailOperations  # noqa: E402  pylint: disable=wrong-import-position
from mail_session import MailSession  # noqa: E402  pylint: disable=wrong-import-position
from mail_settings import MailSettings  # noqa: E402  pylint: disable=wrong-import-position


def make_message(
    subject: str = "Stub Subject",
    sender: str = "Sender <sender@example.com>",
    to: str = "receiver@example.com",
    body: Optional[str] = "Plain body text",
    html: Optional[str] = None,
    date: Optional[str] = "Mon, 01 Jan 2024 12:00:00 +0100",
) -> bytes:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    if date:
        msg["Date"] = date
    if body is not None:
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype="html")
    elif html:
        msg.set_content(html, subtype="html")
    return msg.as_bytes()


class FakeIMAP:
    """
    Stand-in for ``imaplib.IMAP4_SSL`` that records every command.

    ``boxes`` maps mailbox name -> {"exists", "recent", "unseen"}; the LIST
    response is built from ``list_lines``.  Messages live in ``messages``
    as uid -> (flags, raw bytes) and are shared by every folder.
    """

    def __init__(
        self,
        list_lines: Optional[List[Any]] = None,
        boxes: Optional[Dict[str, Dict[str, Any]]] = None,
        messages: Optional[Dict[int, Tuple[List[str], bytes]]] = None,
        capabilities: Sequence[str] = ("IMAP4rev1", "MOVE", "UIDPLUS"),
    ) -> None:
        self.list_lines = list_lines if list_lines is not None else [b'(\\HasNoChildren) "/" "INBOX"']
        self.boxes = boxes if boxes is not None else {"INBOX": {"exists": 0, "recent": 0, "unseen": []}}
        self.messages = messages or {}
        self.capability_names = list(capabilities)
        self.calls: List[Tuple[Any, ...]] = []
        self.failures: Dict[str, str] = {}
        self.select_failures: Dict[str, str] = {}
        self.login_error: Optional[Exception] = None
        self.search_result: Optional[List[int]] = None
        self.fetch_order: Optional[List[int]] = None
        self.selected: Optional[str] = None
        self.logged_out = False

    # -- helpers -------------------------------------------------------------

    def commands(self) -> List[str]:
        names = []
        for call in self.calls:
            names.append(f"UID {call[1]}" if call[0] == "UID" else call[0])
        return names

    def calls_named(self, name: str) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if (f"UID {c[1]}" if c[0] == "UID" else c[0]) == name]

    def _fail(self, name: str) -> Optional[Tuple[str, List[bytes]]]:
        if name in self.failures:
            return "NO", [self.failures[name].encode()]
        return None

    # -- imaplib surface -----------------------------------------------------

    def login(self, user: str, password: str) -> Tuple[str, List[bytes]]:
        self.calls.append(("LOGIN", user))
        if self.login_error is not None:
            raise self.login_error
        return "OK", [b"LOGIN completed"]

    def capability(self) -> Tuple[str, List[bytes]]:
        return "OK", [" ".join(self.capability_names).encode()]

    def logout(self) -> Tuple[str, List[bytes]]:
        self.calls.append(("LOGOUT",))
        self.logged_out = True
        return "BYE", [b"Logging out"]

    def shutdown(self) -> None:
        self.calls.append(("SHUTDOWN",))

    def list(self, directory: str = '""', pattern: str = "*") -> Tuple[str, List[Any]]:
        self.calls.append(("LIST",))
        return self._fail("LIST") or ("OK", list(self.list_lines))

    def create(self, mailbox: str) -> Tuple[str, List[bytes]]:
        self.calls.append(("CREATE", mailbox))
        failed = self._fail("CREATE")
        if failed:
            return failed
        name = mailbox.strip('"')
        self.list_lines.append(f'(\\HasNoChildren) "/" "{name}"'.encode())
        self.boxes.setdefault(name, {"exists": 0, "recent": 0, "unseen": []})
        return "OK", [b"CREATE completed"]

    def delete(self, mailbox: str) -> Tuple[str, List[bytes]]:
        self.calls.append(("DELETE", mailbox))
        return self._fail("DELETE") or ("OK", [b"DELETE completed"])

    def select(self, mailbox: str = "INBOX", readonly: bool = False) -> Tuple[str, List[bytes]]:
        self.calls.append(("EXAMINE" if readonly else "SELECT", mailbox, readonly))
        name = mailbox.strip('"')
        if name in self.select_failures:
            return "NO", [self.select_failures[name].encode()]
        box = self.boxes.get(name)
        if box is None:
            return "NO", [b"Mailbox does not exist"]
        self.selected = name
        return "OK", [str(box.get("exists", 0)).encode()]

    def response(self, code: str) -> Tuple[str, List[Optional[bytes]]]:
        box = self.boxes.get(self.selected or "", {})
        if code.upper() == "RECENT":
            return code, [str(box.get("recent", 0)).encode()]
        return code, [None]

    def expunge(self) -> Tuple[str, List[bytes]]:
        self.calls.append(("EXPUNGE",))
        return self._fail("EXPUNGE") or ("OK", [None])

    def uid(self, command: str, *args: Any) -> Tuple[str, List[Any]]:
        command = command.upper()
        self.calls.append(("UID", command) + args)
        failed = self._fail(command)
        if failed:
            return failed
        if command == "SEARCH":
            return "OK", [self._search(args)]
        if command == "FETCH":
            return "OK", self._fetch(args[0])
        return "OK", [None]

    def _search(self, args: Iterable[Any]) -> bytes:
        terms = [a for a in args if a is not None]
        if terms == ["UNSEEN"]:
            box = self.boxes.get(self.selected or "", {})
            return " ".join(str(u) for u in box.get("unseen", [])).encode()
        uids = self.search_result if self.search_result is not None else sorted(self.messages)
        return " ".join(str(u) for u in uids).encode()

    def _fetch(self, uid_set: str) -> List[Any]:
        requested = [int(u) for u in uid_set.split(",")]
        order = [u for u in (self.fetch_order or requested) if u in requested]
        data: List[Any] = []
        for seq, uid in enumerate(order, start=1):
            if uid not in self.messages:
                continue
            flags, raw = self.messages[uid]
            prefix = f"{seq} (UID {uid} FLAGS ({' '.join(flags)}) BODY[] {{{len(raw)}}}".encode()
            data.append((prefix, raw))
            data.append(b")")
        return data


@pytest.fixture()
def settings() -> MailSettings:
    return MailSettings(address="test@example.com", password="password123")


@pytest.fixture()
def fake_imap() -> FakeIMAP:
    return FakeIMAP()


@pytest.fixture()
def session(settings: MailSettings, fake_imap: FakeIMAP) -> MailSession:
    return MailSession(settings, factory=lambda _: fake_imap)


@pytest.fixture()
def operations(session: MailSession) -> MailOperations:
    session.connect()
    return MailOperations(session)
