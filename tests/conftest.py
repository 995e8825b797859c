# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the imap-relay test suite.
# =============================================================================

import textwrap
from pathlib import Path

import pytest

from imap_relay.core import Account
from imap_relay.sync import TransferPipeline

from fakes import FakeImporter, FakeServer


@pytest.fixture
def sample_account():
    """Create a sample Account for testing."""
    return Account(
        name="work",
        host="imap.example.com",
        port=993,
        username="me@example.com",
        password="hunter2",
    )


@pytest.fixture
def events():
    """Shared log of imports, STOREs and EXPUNGEs, in order."""
    return []


@pytest.fixture
def server(events):
    """An IMAP server whose INBOX holds UIDs 10, 11 and 12."""
    return FakeServer([10, 11, 12], events=events)


@pytest.fixture
def importer(events):
    """A Gmail importer that accepts everything."""
    return FakeImporter(events)


@pytest.fixture
def pipeline(importer):
    return TransferPipeline(importer, ["INBOX", "UNREAD"])


@pytest.fixture
def write_config(tmp_path):
    """Write a TOML config file and return its path."""

    def write(body: str) -> Path:
        path = tmp_path / "relay.toml"
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    return write


@pytest.fixture
def sample_config_toml():
    """A complete, valid config file body."""
    return """
        [general]
        idle_timeout = 120
        restart_delay = 30

        [accounts.work]
        host = "imap.example.com"
        username = "me@example.com"
        password = "hunter2"

        [accounts.spam]
        host = "imap.example.org"
        port = 1993
        username = "me@example.org"
        password = "swordfish"
        mailbox = "Junk"

        [secrets.installed]
        client_id = "client-id.apps.googleusercontent.com"
        client_secret = "client-secret"
        auth_uri = "https://accounts.google.com/o/oauth2/auth"
        token_uri = "https://oauth2.googleapis.com/token"
        redirect_uris = ["http://localhost"]
    """
