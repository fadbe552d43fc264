"""
Single IMAP connection with an explicit lifecycle.

``MailSession`` is the only owner of the process's mailbox connection.  The
operation translator borrows the live handle through :attr:`connection`
for the length of one call chain; nothing else opens sockets to the server.

Security note: by default the TLS context does *not* validate the server
certificate or hostname.  Several consumer providers ship certificates that
fail strict validation, and refusing them makes the server unusable for
those accounts.  Set ``IMAP_TLS_VERIFY=true`` to enforce validation.
"""

from __future__ import annotations

import enum
import imaplib
import logging
import ssl
from typing import Callable, FrozenSet, Optional

from mail_errors import MailConnectionError
from mail_settings import MailSettings

log = logging.getLogger(__name__)

ConnectionFactory = Callable[[MailSettings], imaplib.IMAP4]


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def build_ssl_context(verify: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def open_imap(settings: MailSettings) -> imaplib.IMAP4:
    """Open (but do not authenticate) a connection to the configured server."""
    if settings.imap_tls:
        if not settings.imap_tls_verify:
            log.warning(
                "TLS certificate validation is disabled for %s:%d",
                settings.imap_host, settings.imap_port,
            )
        return imaplib.IMAP4_SSL(
            settings.imap_host,
            settings.imap_port,
            ssl_context=build_ssl_context(settings.imap_tls_verify),
            timeout=settings.imap_timeout,
        )
    return imaplib.IMAP4(settings.imap_host, settings.imap_port, timeout=settings.imap_timeout)


def _read_capabilities(conn: imaplib.IMAP4) -> FrozenSet[str]:
    # Servers often advertise more (MOVE, UIDPLUS) once authenticated.
    typ, data = conn.capability()
    if typ == "OK" and data and data[-1]:
        raw = data[-1]
        text = raw.decode("ascii", errors="replace") if isinstance(raw, bytes) else str(raw)
        return frozenset(text.upper().split())
    return frozenset(str(c).upper() for c in getattr(conn, "capabilities", ()) or ())


class MailSession:
    """Owns one IMAP connection; connect/disconnect are idempotent."""

    def __init__(self, settings: MailSettings, factory: Optional[ConnectionFactory] = None) -> None:
        self.settings = settings
        self._factory = factory or open_imap
        self._conn: Optional[imaplib.IMAP4] = None
        self._capabilities: FrozenSet[str] = frozenset()
        self.state = SessionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    @property
    def connection(self) -> imaplib.IMAP4:
        if self._conn is None or self.state is not SessionState.CONNECTED:
            raise MailConnectionError("IMAP session is not connected")
        return self._conn

    @property
    def capabilities(self) -> FrozenSet[str]:
        if not self.connected:
            raise MailConnectionError("IMAP session is not connected")
        return self._capabilities

    def connect(self) -> None:
        if self.state is SessionState.CONNECTED:
            log.debug("IMAP session already connected")
            return
        log.debug("Connecting to %s", self.settings.describe())
        self.state = SessionState.CONNECTING
        conn: Optional[imaplib.IMAP4] = None
        try:
            conn = self._factory(self.settings)
            conn.login(self.settings.address, self.settings.password)
            capabilities = _read_capabilities(conn)
        except Exception as exc:
            # covers imaplib errors, socket errors and a password imaplib cannot encode
            self.state = SessionState.DISCONNECTED
            log.error("IMAP connection error: %s", exc)
            if conn is not None:
                self._close_quietly(conn)
            raise MailConnectionError(
                f"Could not connect to {self.settings.imap_host}:{self.settings.imap_port}: {exc}",
                details={"host": self.settings.imap_host, "port": self.settings.imap_port},
            ) from exc
        self._conn = conn
        self._capabilities = capabilities
        self.state = SessionState.CONNECTED
        log.info("IMAP session established for %s", self.settings.describe())

    def disconnect(self) -> None:
        if self.state is SessionState.DISCONNECTED:
            log.debug("IMAP session already disconnected")
            return
        conn, self._conn = self._conn, None
        self.state = SessionState.DISCONNECTED
        if conn is None:
            return
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailConnectionError(f"IMAP logout failed: {exc}") from exc
        finally:
            log.info("IMAP session closed")

    def invalidate(self) -> None:
        """Forget a connection the server has already dropped."""
        conn, self._conn = self._conn, None
        self.state = SessionState.DISCONNECTED
        if conn is not None:
            log.warning("IMAP connection lost; session reset")
            self._close_quietly(conn)

    @staticmethod
    def _close_quietly(conn: imaplib.IMAP4) -> None:
        try:
            conn.shutdown()
        except OSError as exc:
            log.debug("Ignoring socket shutdown error: %s", exc)
