import logging

import pytest

from tokenproxy import env


def test_parse_list_env(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_SCOPES", "email,openid  profile")

    assert env.parse_list_env("TOKENPROXY_SCOPES") == ["email", "openid", "profile"]


def test_parse_list_env_empty(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_SCOPES", "  ")

    assert env.parse_list_env("TOKENPROXY_SCOPES") == []


def test_get_env_float(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_HTTP_TIMEOUT", "2.5")

    assert env._get_env_float("TOKENPROXY_HTTP_TIMEOUT", 30) == 2.5


def test_get_env_float_invalid(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_HTTP_TIMEOUT", "soon")

    with pytest.raises(RuntimeError, match="TOKENPROXY_HTTP_TIMEOUT"):
        env._get_env_float("TOKENPROXY_HTTP_TIMEOUT", 30)


def test_validate_env_missing(monkeypatch) -> None:
    monkeypatch.delenv("TOKENPROXY_OIDC_ISSUER", raising=False)
    monkeypatch.delenv("TOKENPROXY_CLIENT_ID", raising=False)

    with pytest.raises(RuntimeError) as excinfo:
        env.validate_env()

    assert "TOKENPROXY_OIDC_ISSUER" in str(excinfo.value)
    assert "TOKENPROXY_CLIENT_ID" in str(excinfo.value)


def test_validate_env_requires_https_issuer(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_OIDC_ISSUER", "http://idp.example.com")
    monkeypatch.setenv("TOKENPROXY_CLIENT_ID", "client-1")

    with pytest.raises(RuntimeError, match="HTTPS"):
        env.validate_env()


def test_validate_env_rejects_unknown_log_level(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_OIDC_ISSUER", "https://idp.example.com")
    monkeypatch.setenv("TOKENPROXY_CLIENT_ID", "client-1")
    monkeypatch.setenv("TOKENPROXY_LOG_LEVEL", "verbose")

    with pytest.raises(RuntimeError, match="TOKENPROXY_LOG_LEVEL"):
        env.validate_env()


def test_validate_env_ok(monkeypatch) -> None:
    monkeypatch.setenv("TOKENPROXY_OIDC_ISSUER", "https://idp.example.com")
    monkeypatch.setenv("TOKENPROXY_CLIENT_ID", "client-1")
    monkeypatch.delenv("TOKENPROXY_LOG_LEVEL", raising=False)

    env.validate_env()


def test_setup_logging_debug() -> None:
    env.setup_logging("debug")

    assert logging.getLogger("tokenproxy").level == logging.DEBUG
    assert logging.getLogger("auth").level == logging.DEBUG

    env.setup_logging("info")

    assert logging.getLogger("tokenproxy").level == logging.INFO
