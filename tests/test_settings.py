import pytest

from mail_errors import ConfigurationError
from mail_settings import DEFAULT_IMAP_HOST, DEFAULT_IMAP_PORT, load_settings


def test_defaults() -> None:
    settings = load_settings({"EMAIL_ADDRESS": "me@t-online.de", "EMAIL_PASSWORD": "secret"})

    assert settings.imap_host == DEFAULT_IMAP_HOST
    assert settings.imap_port == DEFAULT_IMAP_PORT
    assert settings.imap_tls is True
    assert settings.imap_tls_verify is False
    assert settings.imap_timeout is None
    assert settings.transport == "stdio"
    assert settings.describe() == "imaps://me@t-online.de@secureimap.t-online.de:993"


def test_overrides() -> None:
    settings = load_settings({
        "EMAIL_ADDRESS": "me@example.com",
        "EMAIL_PASSWORD": "secret",
        "IMAP_HOST": "imap.example.com",
        "IMAP_PORT": "143",
        "IMAP_TLS": "no",
        "IMAP_TLS_VERIFY": "yes",
        "IMAP_TIMEOUT": "12.5",
        "MCP_TRANSPORT": "HTTP",
        "PORT": "9000",
        "DEBUG": "1",
    })

    assert (settings.imap_host, settings.imap_port) == ("imap.example.com", 143)
    assert settings.imap_tls is False
    assert settings.imap_tls_verify is True
    assert settings.imap_timeout == 12.5
    assert settings.transport == "http"
    assert settings.http_port == 9000
    assert settings.debug is True


def test_missing_credentials() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({})

    assert excinfo.value.problems == ["EMAIL_ADDRESS is required", "EMAIL_PASSWORD is required"]


def test_all_problems_reported_together() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({
            "EMAIL_ADDRESS": "not-an-address",
            "EMAIL_PASSWORD": "x",
            "IMAP_PORT": "99999",
            "IMAP_TLS": "maybe",
            "IMAP_TIMEOUT": "-1",
            "MCP_TRANSPORT": "carrier-pigeon",
        })

    problems = excinfo.value.problems
    assert len(problems) == 5
    assert any("IMAP_PORT" in p for p in problems)
    assert "Invalid configuration" in str(excinfo.value)


def test_non_ascii_password_rejected() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({"EMAIL_ADDRESS": "me@t-online.de", "EMAIL_PASSWORD": "Passwört1"})

    assert excinfo.value.problems == ["EMAIL_PASSWORD must contain only ASCII characters"]
