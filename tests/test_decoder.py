import pytest

from conftest import make_message
from mail_errors import DecodeError
from message_decoder import decode_header_value, decode_message, html_to_text


def test_decode_encoded_header() -> None:
    assert decode_header_value("=?utf-8?b?R3LDvMOfZQ==?=") == "Grüße"
    assert decode_header_value(None) == ""


def test_plain_text_preferred_over_html() -> None:
    raw = make_message(body="plain wins", html="<p>html loses</p>")

    assert decode_message(raw).body == "plain wins"


def test_html_only_body_is_flattened() -> None:
    raw = make_message(body=None, html="<html><head><style>p {}</style></head><body><p>Hello</p><p>World</p></body></html>")

    body = decode_message(raw).body

    assert "Hello" in body and "World" in body
    assert "<p>" not in body
    assert "p {}" not in body


def test_html_to_text_breaks() -> None:
    assert html_to_text("one<br>two<script>x()</script>") == "one\ntwo"


def test_attachments_are_skipped() -> None:
    from email.message import EmailMessage

    msg = EmailMessage()
    msg["Subject"] = "with file"
    msg["From"] = "a@example.com"
    msg.set_content("see attached")
    msg.add_attachment("secret notes", filename="notes.txt")

    assert decode_message(msg.as_bytes()).body == "see attached"


def test_recipients_deduplicated() -> None:
    raw = make_message(to="Ann <ann@example.com>, bob@example.com, ann@example.com")

    assert decode_message(raw).to == ["ann@example.com", "bob@example.com"]


def test_unparseable_date_is_empty() -> None:
    raw = b"Subject: hi\r\nDate: sometime soon\r\n\r\nbody\r\n"

    assert decode_message(raw).date == ""


def test_missing_headers_default_to_empty() -> None:
    decoded = decode_message(b"\r\njust a body\r\n")

    assert decoded.subject == ""
    assert decoded.sender == ""
    assert decoded.to == []
    assert decoded.body == "just a body"


def test_empty_payload_raises() -> None:
    with pytest.raises(DecodeError):
        decode_message(b"")
