# =============================================================================
# Application Entry Point Tests
# =============================================================================

from pathlib import Path

import httpx
import pytest

from imap_relay import app
from imap_relay.app import load_token_provider, main, parse_args
from imap_relay.config import Config


def test_parse_args():
    args = parse_args(["relay.toml", "--debug"])

    assert args.config == Path("relay.toml")
    assert args.debug is True


def test_parse_args_requires_config():
    with pytest.raises(SystemExit):
        parse_args([])


def test_missing_config_exits_with_error(tmp_path):
    assert main([str(tmp_path / "missing.toml")]) == 1


def test_invalid_config_exits_with_error(write_config):
    assert main([str(write_config("[general]\n"))]) == 1


async def test_stored_tokens_are_used_without_prompting(write_config, sample_config_toml, monkeypatch):
    config = Config.load(write_config(sample_config_toml + """
        [tokens]
        access_token = "stored-access"
        refresh_token = "stored-refresh"
        expiry = "2099-01-01T00:00:00+00:00"
    """))

    async def never(*args, **kwargs):
        raise AssertionError("should not prompt for authorization")

    monkeypatch.setattr(app, "authorize_interactive", never)

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as http:
        provider = await load_token_provider(config, http)

        assert await provider.get_access_token() == "stored-access"
    assert provider.secret.client_id == "client-id.apps.googleusercontent.com"


async def test_first_run_authorizes_and_saves_tokens(write_config, sample_config_toml, monkeypatch):
    path = write_config(sample_config_toml)
    config = Config.load(path)

    async def authorize(secret, http):
        return app.TokenSet(access_token="new-access", refresh_token="new-refresh")

    monkeypatch.setattr(app, "authorize_interactive", authorize)

    async with httpx.AsyncClient() as http:
        provider = await load_token_provider(config, http)

    assert provider.tokens.refresh_token == "new-refresh"
    assert Config.load(path).tokens["refresh_token"] == "new-refresh"


async def test_unusable_client_secret_fails_run(write_config):
    config = Config.load(write_config("""
        [accounts.work]
        host = "imap.example.com"
        username = "me"
        password = "pw"

        [secrets.installed]
        client_secret = "secret"
    """))

    assert await app.run(config) == 1
