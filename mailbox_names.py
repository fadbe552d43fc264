"""
Mailbox name handling.

IMAP transmits mailbox names in a modified UTF-7 (RFC 3501 section 5.1.3):
printable ASCII passes through, ``&`` becomes ``&-`` and everything else is
base64 of UTF-16 between ``&`` and ``-`` with ``,`` in place of ``/``.
Folders are shown to callers decoded and encoded again on the way out.
"""

from __future__ import annotations

import re

_PRINTABLE = set(map(chr, range(0x20, 0x7F))) - {"&"}
_ATOM_RE = re.compile(r"^[A-Za-z0-9_.\-/&+,:]+$")


def _modified_base64(text: str) -> str:
    s_utf7 = text.encode("utf-7")
    return s_utf7[1:-1].replace(b"/", b",").decode("ascii")


def _modified_unbase64(chunk: str) -> str:
    s_utf7 = b"+" + chunk.replace(",", "/").encode("ascii") + b"-"
    return s_utf7.decode("utf-7")


def encode_mailbox(name: str) -> str:
    out: list[str] = []
    pending: list[str] = []
    for c in name:
        if c in _PRINTABLE:
            if pending:
                out.append("&" + _modified_base64("".join(pending)) + "-")
                pending = []
            out.append(c)
        elif c == "&":
            if pending:
                out.append("&" + _modified_base64("".join(pending)) + "-")
                pending = []
            out.append("&-")
        else:
            pending.append(c)
    if pending:
        out.append("&" + _modified_base64("".join(pending)) + "-")
    return "".join(out)


def decode_mailbox(name: str) -> str:
    out: list[str] = []
    chunk: list[str] = []
    shifted = False
    for c in name:
        if c == "&" and not shifted:
            shifted = True
        elif c == "-" and shifted:
            out.append(_modified_unbase64("".join(chunk)) if chunk else "&")
            chunk = []
            shifted = False
        elif shifted:
            chunk.append(c)
        else:
            out.append(c)
    if shifted and chunk:
        out.append(_modified_unbase64("".join(chunk)))
    return "".join(out)


def quote_mailbox(name: str) -> str:
    """Encode ``name`` and quote it when it is not a plain atom."""
    encoded = encode_mailbox(name)
    if _ATOM_RE.match(encoded):
        return encoded
    escaped = encoded.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
