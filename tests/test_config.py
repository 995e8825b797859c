# =============================================================================
# Configuration Tests
# =============================================================================

import tomllib

import keyring
import pytest
from keyring.errors import KeyringError

from imap_relay import config as config_module
from imap_relay.config import Config, ConfigError


def test_load_accounts_and_general(write_config, sample_config_toml):
    config = Config.load(write_config(sample_config_toml))

    assert [a.name for a in config.accounts] == ["work", "spam"]
    work, spam = config.accounts
    assert work.address == "imap.example.com:993"
    assert work.password == "hunter2"
    assert work.mailbox == "INBOX"
    assert spam.port == 1993
    assert spam.mailbox == "Junk"

    assert config.general.idle_timeout == 120
    assert config.general.restart_delay == 30
    assert config.secrets["installed"]["client_id"] == "client-id.apps.googleusercontent.com"
    assert config.tokens is None


def test_defaults(write_config):
    config = Config.load(write_config("""
        [accounts.work]
        host = "imap.example.com"
        username = "me@example.com"
        password = "hunter2"

        [secrets]
        client_id = "id"
        client_secret = "secret"
    """))

    assert config.general.idle_timeout == 300
    assert config.general.restart_delay == 300
    assert config.labels == {"INBOX": "INBOX", "Junk": "SPAM"}


def test_labels_table_replaces_defaults(write_config, sample_config_toml):
    config = Config.load(write_config(sample_config_toml + """
        [labels]
        INBOX = "Label_7"
    """))

    assert config.labels == {"INBOX": "Label_7"}


def test_password_from_keyring(write_config, monkeypatch):
    lookups = []

    def get_password(service, username):
        lookups.append((service, username))
        return "from-keyring"

    monkeypatch.setattr(keyring, "get_password", get_password)

    config = Config.load(write_config("""
        [accounts.personal]
        host = "imap.example.net"
        username = "me@example.net"

        [secrets]
        client_id = "id"
        client_secret = "secret"
    """))

    assert config.accounts[0].password == "from-keyring"
    assert lookups == [("imap-relay:personal", "me@example.net")]


def test_keyring_failure_means_no_password(write_config, monkeypatch):
    def get_password(service, username):
        raise KeyringError("no backend")

    monkeypatch.setattr(keyring, "get_password", get_password)

    with pytest.raises(ConfigError, match="keyring set imap-relay:personal"):
        Config.load(write_config("""
            [accounts.personal]
            host = "imap.example.net"
            username = "me@example.net"

            [secrets]
            client_id = "id"
            client_secret = "secret"
        """))


@pytest.mark.parametrize("body,message", [
    ("""
        [secrets]
        client_id = "id"
    """, r"\[accounts\] is empty or missing"),
    ("""
        [accounts]

        [secrets]
        client_id = "id"
    """, r"\[accounts\] is empty or missing"),
    ("""
        [accounts.work]
        host = "imap.example.com"
        username = "me"
        password = "pw"
    """, r"\[secrets\]"),
    ("""
        [accounts.work]
        host = "imap.example.com"
        password = "pw"

        [secrets]
        client_id = "id"
    """, "needs both host and username"),
    ("""
        [accounts.work]
        host = "imap.example.com"
        username = "me"
        password = "pw"
        port = 99999

        [secrets]
        client_id = "id"
    """, "invalid port"),
    ("""
        [general]
        idle_timeout = "soon"

        [accounts.work]
        host = "imap.example.com"
        username = "me"
        password = "pw"

        [secrets]
        client_id = "id"
    """, "idle_timeout"),
])
def test_invalid_config(write_config, body, message):
    with pytest.raises(ConfigError, match=message):
        Config.load(write_config(body))


def test_malformed_toml(write_config):
    with pytest.raises(ConfigError, match="Invalid config file"):
        Config.load(write_config("[accounts.work\nhost = "))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        Config.load(tmp_path / "nope.toml")


def test_save_tokens_keeps_rest_of_file(write_config, sample_config_toml):
    path = write_config(sample_config_toml)
    config = Config.load(path)

    config.save_tokens({
        "access_token": "a",
        "refresh_token": "r",
        "expiry": "2024-01-15T10:00:00+00:00",
        "unused": None,
    })

    with open(path, "rb") as f:
        saved = tomllib.load(f)
    assert saved["tokens"] == {
        "access_token": "a",
        "refresh_token": "r",
        "expiry": "2024-01-15T10:00:00+00:00",
    }
    assert saved["accounts"]["spam"]["mailbox"] == "Junk"

    reloaded = Config.load(path)
    assert reloaded.tokens == saved["tokens"]
    assert [a.name for a in reloaded.accounts] == ["work", "spam"]


def test_zero_idle_timeout_is_rejected(write_config, sample_config_toml):
    body = sample_config_toml.replace("idle_timeout = 120", "idle_timeout = 0")

    with pytest.raises(ConfigError, match="idle_timeout must be a positive"):
        Config.load(write_config(body))


def test_zero_restart_delay_is_allowed(write_config, sample_config_toml):
    body = sample_config_toml.replace("restart_delay = 30", "restart_delay = 0")

    assert Config.load(write_config(body)).general.restart_delay == 0


def test_failed_token_save_keeps_old_file(write_config, sample_config_toml, monkeypatch):
    path = write_config(sample_config_toml)
    original = path.read_bytes()
    config = Config.load(path)

    def broken_dump(document, f):
        f.write(b"[accounts.work]\nhost = ")
        raise OSError("disk full")

    monkeypatch.setattr(config_module.tomli_w, "dump", broken_dump)

    with pytest.raises(OSError):
        config.save_tokens({"access_token": "a", "refresh_token": "r"})

    assert path.read_bytes() == original
    assert list(path.parent.iterdir()) == [path]
