"""
Process configuration.

Settings come from the environment, optionally seeded from a ``.env`` file
that lives next to this module.  Required variables are the account address
and password; everything else has a default that matches T-Online's IMAP
service.  See ``.env.example`` for a template.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from mail_errors import ConfigurationError

DEFAULT_IMAP_HOST = "secureimap.t-online.de"
DEFAULT_IMAP_PORT = 993
DEFAULT_SERVER_NAME = "t-online-email-server"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}
_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class MailSettings:
    """Finished configuration handed to the mailbox session."""

    address: str
    password: str
    imap_host: str = DEFAULT_IMAP_HOST
    imap_port: int = DEFAULT_IMAP_PORT
    imap_tls: bool = True
    # Provider certificates are accepted unverified unless this is set.
    imap_tls_verify: bool = False
    imap_timeout: Optional[float] = None
    server_name: str = DEFAULT_SERVER_NAME
    transport: str = "stdio"
    http_host: str = "127.0.0.1"
    http_port: int = 8000
    debug: bool = False

    def describe(self) -> str:
        """Connection summary safe for logs (no credentials)."""
        scheme = "imaps" if self.imap_tls else "imap"
        return f"{scheme}://{self.address}@{self.imap_host}:{self.imap_port}"


def load_env_file(path: Optional[Path] = None) -> None:
    """Load ``.env`` without clobbering variables already in the environment."""
    load_dotenv(dotenv_path=path or Path(__file__).with_name(".env"), override=False)


def _parse_bool(name: str, raw: str, problems: list[str]) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    problems.append(f"{name} must be true or false, got {raw!r}")
    return False


def _parse_port(name: str, raw: str, problems: list[str], default: int) -> int:
    try:
        port = int(raw.strip())
    except ValueError:
        problems.append(f"{name} must be an integer, got {raw!r}")
        return default
    if not 0 < port < 65536:
        problems.append(f"{name} must be between 1 and 65535, got {port}")
        return default
    return port


def load_settings(environ: Optional[Mapping[str, str]] = None) -> MailSettings:
    """
    Build :class:`MailSettings` from ``environ`` (defaults to ``os.environ``).

    All problems are collected before raising so that a misconfigured
    deployment can be fixed in one pass.

    Raises:
        ConfigurationError: a required variable is missing or a value does
            not parse.
    """
    env = os.environ if environ is None else environ
    problems: list[str] = []

    address = env.get("EMAIL_ADDRESS", "").strip()
    if not address:
        problems.append("EMAIL_ADDRESS is required")
    elif not _ADDRESS_RE.match(address):
        problems.append(f"EMAIL_ADDRESS is not a valid email address: {address!r}")

    password = env.get("EMAIL_PASSWORD", "")
    if not password:
        problems.append("EMAIL_PASSWORD is required")
    elif not password.isascii():
        # imaplib sends LOGIN arguments as ASCII
        problems.append("EMAIL_PASSWORD must contain only ASCII characters")

    host = env.get("IMAP_HOST", DEFAULT_IMAP_HOST).strip() or DEFAULT_IMAP_HOST
    port = _parse_port("IMAP_PORT", env.get("IMAP_PORT", str(DEFAULT_IMAP_PORT)), problems, DEFAULT_IMAP_PORT)
    tls = _parse_bool("IMAP_TLS", env.get("IMAP_TLS", "true"), problems)
    tls_verify = _parse_bool("IMAP_TLS_VERIFY", env.get("IMAP_TLS_VERIFY", "false"), problems)

    timeout: Optional[float] = None
    raw_timeout = env.get("IMAP_TIMEOUT", "").strip()
    if raw_timeout:
        try:
            timeout = float(raw_timeout)
        except ValueError:
            problems.append(f"IMAP_TIMEOUT must be a number of seconds, got {raw_timeout!r}")
        else:
            if timeout <= 0:
                problems.append("IMAP_TIMEOUT must be positive")
                timeout = None

    transport = env.get("MCP_TRANSPORT", "stdio").strip().lower() or "stdio"
    if transport not in {"stdio", "http"}:
        problems.append(f"MCP_TRANSPORT must be 'stdio' or 'http', got {transport!r}")

    http_port = _parse_port("PORT", env.get("PORT", "8000"), problems, 8000)
    debug = _parse_bool("DEBUG", env.get("DEBUG", "false"), problems)

    if problems:
        raise ConfigurationError(problems)

    return MailSettings(
        address=address,
        password=password,
        imap_host=host,
        imap_port=port,
        imap_tls=tls,
        imap_tls_verify=tls_verify,
        imap_timeout=timeout,
        server_name=env.get("MCP_SERVER_NAME", DEFAULT_SERVER_NAME).strip() or DEFAULT_SERVER_NAME,
        transport=transport,
        http_host=env.get("HOST", "127.0.0.1").strip() or "127.0.0.1",
        http_port=http_port,
        debug=debug,
    )
