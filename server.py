"""
MCP Server for IMAP Email
=========================

This module implements a Model Context Protocol (MCP) server that exposes a
single IMAP mailbox (T-Online by default, any IMAP provider in practice) as
a set of tools.  The server uses the `fastmcp` framework to handle the
protocol machinery.  Each tool validates its arguments, drives the mailbox
layer over one shared IMAP session and renders the result.

**Prerequisites**

Running this server requires a few third-party packages:

* `fastmcp` - simplifies building MCP servers and clients.
* `python-dotenv` - loads environment variables from a `.env` file.

```bash
pip install -e .
```

Set ``EMAIL_ADDRESS`` and ``EMAIL_PASSWORD`` (an app password for
T-Online) in a `.env` file alongside this script.  See ```.env.example```
for a template and the remaining options.

**Functionality**

* **Searching:** `search_emails` filters a folder by sender, recipient,
  subject, body text, date range and read/flag state.
* **Folders:** `get_folders`, `create_folder`, `delete_folder`.
* **Organising:** `move_email`, `mark_as_read`, `mark_as_unread`.
* **Deleting:** `delete_email` and `batch_delete_emails` flag messages
  ``\\Deleted`` and expunge them.  This is permanent.
* **Statistics:** `get_email_stats` summarises inbox, sent, drafts and
  trash folders.

Results carry a short human summary plus the JSON payload, both in the
``content`` field and as ``structuredContent``.

**Operational notes**

Only one tool invocation touches the mailbox at a time.  Whenever a tool
fails, the IMAP session is dropped so the next call starts from a fresh
login.  By default the server accepts the provider's TLS certificate
without validating it (see ``IMAP_TLS_VERIFY``).  Keep the server private:
whoever can reach it can read and delete your mail.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
import threading
from typing import Annotated, Any, Callable, Dict, Iterator, List, Optional, TypeVar

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult
from fastmcp.tools.tool_transform import ArgTransform
from mcp.types import TextContent
from pydantic import Field
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from mail_errors import ConfigurationError, MailConnectionError, MailError, ValidationError
from mail_models import DEFAULT_FOLDER, DEFAULT_LIMIT, SearchCriteria
from mail_operations import MailOperations, imap_date
from mail_session import ConnectionFactory, MailSession
from mail_settings import DEFAULT_SERVER_NAME, MailSettings, load_env_file, load_settings
from mail_stats import StatisticsAggregator

T = TypeVar("T")


# ---------------------------------------------------------------------------
#  Configuration & logging
#
# Environment variables are loaded from a .env file located next to this
# script.  Variables already present in the environment win.
# ---------------------------------------------------------------------------

load_env_file()

# Logging goes to stderr so the stdio transport stays clean.
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
log = logging.getLogger("imap-mcp")


# ---------------------------------------------------------------------------
#  MCP Server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    os.environ.get("MCP_SERVER_NAME", DEFAULT_SERVER_NAME).strip() or DEFAULT_SERVER_NAME,
    instructions=(
        "This server exposes one IMAP mailbox via the Model Context Protocol.  "
        "Use the tools to search, organise, flag and delete email.  Message "
        "UIDs are only unique within their folder; always pass the folder a "
        "UID came from.  Dates are ISO 8601 (YYYY-MM-DD)."
    ),
)


@mcp.custom_route("/health", methods=["GET"])
async def health(_: Request) -> PlainTextResponse:
    """Simple health check for infrastructure monitoring."""
    return PlainTextResponse("OK")


# ---------------------------------------------------------------------------
#  Mailbox service
#
# One session, one translator and a lock that keeps a whole tool
# invocation (connect + command chain) exclusive.
# ---------------------------------------------------------------------------

class MailboxService:
    def __init__(self, settings: MailSettings, factory: Optional[ConnectionFactory] = None) -> None:
        self.settings = settings
        self.session = MailSession(settings, factory)
        self.operations = MailOperations(self.session)
        self._lock = threading.Lock()

    def run(self, tool: str, action: Callable[[MailOperations], T]) -> T:
        with self._lock:
            try:
                self.session.connect()
                return action(self.operations)
            except MailError as exc:
                log.error("Tool %s failed: %s", tool, exc)
                self._force_disconnect()
                raise ToolError(f"Error: {exc}") from exc
            except Exception as exc:
                log.exception("Tool %s failed unexpectedly", tool)
                self._force_disconnect()
                raise ToolError(f"Error: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._force_disconnect()

    def _force_disconnect(self) -> None:
        try:
            self.session.disconnect()
        except MailConnectionError as exc:
            log.warning("Error while disconnecting: %s", exc)


_service: Optional[MailboxService] = None


def configure(settings: MailSettings, factory: Optional[ConnectionFactory] = None) -> MailboxService:
    """Install the mailbox service used by every tool."""
    global _service
    if _service is not None:
        _service.close()
    _service = MailboxService(settings, factory)
    return _service


def get_service() -> MailboxService:
    if _service is None:
        try:
            return configure(load_settings())
        except ConfigurationError as exc:
            log.error("%s", exc)
            raise ToolError(f"Error: {exc}") from exc
    return _service


def _run(tool: str, action: Callable[[MailOperations], T]) -> T:
    return get_service().run(tool, action)


# ---------------------------------------------------------------------------
#  Argument checks and result helpers
# ---------------------------------------------------------------------------

@contextlib.contextmanager
def _arguments(tool: str) -> Iterator[None]:
    """Reject bad arguments before the mailbox is touched."""
    try:
        yield
    except ValidationError as exc:
        log.warning("Rejected %s call: %s", tool, exc)
        raise ToolError(f"Error: {exc}") from exc


def _require_name(field: str, value: Optional[str]) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be empty")
    return text


def _require_uid(value: Any, field: str = "uid") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer, got {value!r}")
    return value


def _require_uids(values: Optional[List[int]]) -> List[int]:
    if not values:
        raise ValidationError("uids must contain at least one UID")
    return [_require_uid(v, "uids") for v in values]


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value if value.strip() else None


def _tool_result(payload: Dict[str, Any], *, text: Optional[str] = None) -> ToolResult:
    """Create a ToolResult that keeps both summary text and JSON detail."""
    blocks: List[TextContent] = []
    if text:
        blocks.append(TextContent(type="text", text=text))
    blocks.append(TextContent(type="text", text=json.dumps(payload, indent=2, sort_keys=True, default=str)))
    return ToolResult(content=blocks, structured_content=payload)


def _ack(text: str, **details: Any) -> ToolResult:
    return _tool_result({"success": True, "message": text, **details}, text=text)


# ---------------------------------------------------------------------------
#  Mail tools
# ---------------------------------------------------------------------------

def _search_emails(
    folder: str = DEFAULT_FOLDER,
    sender: Annotated[Optional[str], Field(description="Match the From header")] = None,
    recipient: Annotated[Optional[str], Field(description="Match the To header")] = None,
    subject: Optional[str] = None,
    body: Optional[str] = None,
    since: Annotated[Optional[str], Field(description="Only messages on or after this date (YYYY-MM-DD)")] = None,
    before: Annotated[Optional[str], Field(description="Only messages before this date (YYYY-MM-DD)")] = None,
    seen: Optional[bool] = None,
    flagged: Optional[bool] = None,
    limit: Annotated[int, Field(ge=1)] = DEFAULT_LIMIT,
) -> ToolResult:
    """
    Search a folder for emails matching every given criterion.

    With no criteria, all messages in the folder match.  At most ``limit``
    matches are fetched, taken in ascending UID order (oldest first), not
    by relevance.  Text criteria are case-insensitive substring matches
    performed by the server.

    Returns ``emails``: a list of objects with ``uid``, ``subject``,
    ``from``, ``to`` (addresses), ``date`` (ISO 8601, empty if unknown),
    ``body`` (plain text), ``folder``, ``seen`` and ``flagged``.
    """
    with _arguments("search_emails"):
        criteria = SearchCriteria(
            folder=_require_name("folder", folder),
            sender=_optional_text(sender),
            recipient=_optional_text(recipient),
            subject=_optional_text(subject),
            body=_optional_text(body),
            since=_optional_text(since),
            before=_optional_text(before),
            seen=seen,
            flagged=flagged,
            limit=limit,
        )
        if criteria.limit < 1:
            raise ValidationError("limit must be at least 1")
        for value in (criteria.since, criteria.before):
            if value is not None:
                imap_date(value)
    messages = _run("search_emails", lambda ops: ops.search(criteria))
    payload = {
        "folder": criteria.folder,
        "count": len(messages),
        "emails": [m.to_dict() for m in messages],
    }
    return _tool_result(payload, text=f"{len(messages)} email(s) found in {criteria.folder}")


mcp.add_tool(
    Tool.from_tool(
        Tool.from_function(_search_emails, name="search_emails"),
        transform_args={
            "sender": ArgTransform(name="from"),
            "recipient": ArgTransform(name="to"),
        },
    )
)


@mcp.tool()
def get_email_stats() -> ToolResult:
    """
    Summarise the account: message, unread and read totals across up to
    five well-known folders (names containing inbox, sent, draft or trash),
    with per-folder counts.  Folders that cannot be opened are skipped.
    """
    stats = _run("get_email_stats", lambda ops: StatisticsAggregator(ops).collect())
    return _tool_result(stats.to_dict(), text=stats.summary())


@mcp.tool()
def get_folders() -> ToolResult:
    """
    List every folder in the account, parents before their children.

    Each entry has ``name``, ``path`` (pass this to other tools),
    ``delimiter`` and ``attributes`` (IMAP flags such as ``\\Noselect``).
    """
    folders = _run("get_folders", lambda ops: ops.list_folders())
    return _tool_result({"folders": [f.to_dict() for f in folders]}, text=f"{len(folders)} folder(s)")


@mcp.tool()
def create_folder(folderName: str) -> ToolResult:  # noqa: N803
    """Create a folder.  Use the server's delimiter (see ``get_folders``) for sub-folders."""
    with _arguments("create_folder"):
        name = _require_name("folderName", folderName)
    _run("create_folder", lambda ops: ops.create_folder(name))
    return _ack(f'Folder "{name}" created.', folder=name)


@mcp.tool()
def delete_folder(folderName: str) -> ToolResult:  # noqa: N803
    """Delete a folder and every message in it."""
    with _arguments("delete_folder"):
        name = _require_name("folderName", folderName)
    _run("delete_folder", lambda ops: ops.delete_folder(name))
    return _ack(f'Folder "{name}" deleted.', folder=name)


@mcp.tool()
def move_email(uid: int, fromFolder: str, toFolder: str) -> ToolResult:  # noqa: N803
    """
    Move one email to another folder.

    The UID is only valid in ``fromFolder``; after the move the message
    has a new UID in ``toFolder``.
    """
    with _arguments("move_email"):
        uid = _require_uid(uid)
        source = _require_name("fromFolder", fromFolder)
        destination = _require_name("toFolder", toFolder)
    _run("move_email", lambda ops: ops.move(uid, source, destination))
    return _ack(
        f'Email (UID: {uid}) moved from "{source}" to "{destination}".',
        uid=uid, fromFolder=source, toFolder=destination,
    )


@mcp.tool()
def mark_as_read(uid: int, folder: str = DEFAULT_FOLDER) -> ToolResult:
    """Set the ``\\Seen`` flag on an email."""
    with _arguments("mark_as_read"):
        uid = _require_uid(uid)
        folder = _require_name("folder", folder)
    _run("mark_as_read", lambda ops: ops.mark_read(uid, folder))
    return _ack(f"Email (UID: {uid}) marked as read.", uid=uid, folder=folder)


@mcp.tool()
def mark_as_unread(uid: int, folder: str = DEFAULT_FOLDER) -> ToolResult:
    """Clear the ``\\Seen`` flag on an email."""
    with _arguments("mark_as_unread"):
        uid = _require_uid(uid)
        folder = _require_name("folder", folder)
    _run("mark_as_unread", lambda ops: ops.mark_unread(uid, folder))
    return _ack(f"Email (UID: {uid}) marked as unread.", uid=uid, folder=folder)


@mcp.tool()
def delete_email(uid: int, folder: str = DEFAULT_FOLDER) -> ToolResult:
    """
    Permanently delete an email (flag ``\\Deleted`` then expunge).  This
    cannot be undone; use `move_email` to a trash folder if unsure.
    """
    with _arguments("delete_email"):
        uid = _require_uid(uid)
        folder = _require_name("folder", folder)
    _run("delete_email", lambda ops: ops.delete(uid, folder))
    return _ack(f"Email (UID: {uid}) permanently deleted.", uid=uid, folder=folder)


@mcp.tool()
def batch_delete_emails(uids: List[int], folder: str = DEFAULT_FOLDER) -> ToolResult:
    """Permanently delete several emails from one folder with a single expunge."""
    with _arguments("batch_delete_emails"):
        uids = _require_uids(uids)
        folder = _require_name("folder", folder)
    _run("batch_delete_emails", lambda ops: ops.batch_delete(uids, folder))
    return _ack(f"{len(uids)} email(s) permanently deleted.", uids=uids, folder=folder)


# ---------------------------------------------------------------------------
#  Server entry point
# ---------------------------------------------------------------------------

def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        for problem in exc.problems:
            log.error("Configuration error: %s", problem)
        log.error("Check the .env file next to server.py (see .env.example)")
        sys.exit(1)
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    service = configure(settings)
    try:
        if settings.transport == "http":
            log.info(
                "Starting MCP HTTP server on %s:%d (IMAP=%s:%d)",
                settings.http_host, settings.http_port, settings.imap_host, settings.imap_port,
            )
            mcp.run(transport="http", host=settings.http_host, port=settings.http_port, path="/mcp")
        else:
            log.info("Starting MCP stdio server %s (IMAP=%s:%d)", mcp.name, settings.imap_host, settings.imap_port)
            mcp.run()
    finally:
        service.close()


if __name__ == "__main__":
    main()
