"""
Error types raised by the mailbox layer.

Every failure surfaced by the session, the operation translator or the
dispatcher derives from :class:`MailError`, so the tool layer can catch a
single base class, force a disconnect and report the message back to the
caller.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MailError(Exception):
    """Base exception for all mailbox errors."""

    user_message = "A mailbox error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(MailError):
    """Missing or invalid settings.  Fatal at startup."""

    user_message = "Invalid configuration"

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__(
            "Invalid configuration: " + "; ".join(self.problems),
            details={"problems": self.problems},
        )


class MailConnectionError(MailError, ConnectionError):
    """Connecting, logging in or logging out failed, or the link dropped."""

    user_message = "IMAP connection failed"


class ProtocolError(MailError):
    """A mailbox command was rejected by the server."""

    user_message = "IMAP command failed"

    def __init__(self, command: str, response: str = "") -> None:
        self.command = command
        self.response = response
        text = f"IMAP {command} failed"
        if response:
            text = f"{text}: {response}"
        super().__init__(text, details={"command": command, "response": response})


class DecodeError(MailError):
    """A single fetched message could not be decoded."""

    user_message = "Message could not be decoded"


class ValidationError(MailError):
    """Caller supplied arguments that do not fit the tool's shape."""

    user_message = "Invalid arguments"
