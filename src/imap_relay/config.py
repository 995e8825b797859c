# =============================================================================
# Configuration Management
# =============================================================================
# Handles loading and validating the relay's TOML configuration, and
# writing OAuth tokens back into it.
#
# The file is named on the command line. It holds:
#   - [general]: idle timeout and restart delay
#   - [labels]: source mailbox -> Gmail label mapping
#   - [accounts.NAME]: one table per source IMAP account
#   - [secrets]: the Google OAuth client secret, as downloaded
#   - [tokens]: OAuth tokens (written by the relay itself)
#
# Passwords may be left out of the file and stored in the system keyring
# instead, under the service "imap-relay:NAME".
# =============================================================================

import logging
import os
import tempfile
import tomllib  # Built into Python 3.11+
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import keyring
import tomli_w  # For writing TOML (tomllib is read-only)
from keyring.errors import KeyringError

from imap_relay.core import Account
from imap_relay.imap import DEFAULT_IDLE_TIMEOUT
from imap_relay.sync import DEFAULT_LABELS, DEFAULT_RESTART_DELAY

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Data Structures
# =============================================================================

@dataclass
class GeneralConfig:
    """
    Process-wide timing settings.

    Attributes:
        idle_timeout: Seconds to stay in IDLE before re-checking the
                      mailbox anyway.
        restart_delay: Seconds to wait before reconnecting after a
                       session ends.
    """
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    restart_delay: float = DEFAULT_RESTART_DELAY


@dataclass
class Config:
    """
    Main configuration container for the relay.

    Attributes:
        path: File this configuration was loaded from (tokens are saved
              back here).
        general: Timing settings.
        accounts: Source accounts, in file order.
        labels: Source mailbox -> Gmail label mapping.
        secrets: The OAuth client secret document.
        tokens: Stored OAuth tokens, or None before first authorization.

    Usage:
        >>> config = Config.load(Path("relay.toml"))
        >>> [a.name for a in config.accounts]
        ['work', 'personal']
    """
    path: Path | None = None
    general: GeneralConfig = field(default_factory=GeneralConfig)
    accounts: list[Account] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LABELS))
    secrets: dict[str, Any] = field(default_factory=dict)
    tokens: dict[str, Any] | None = None

    # The parsed document, kept so saving tokens preserves everything else
    _document: dict[str, Any] = field(default_factory=dict, repr=False)

    # -------------------------------------------------------------------------
    # Loading and Saving
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "Config":
        """
        Load configuration from a TOML file.

        Returns:
            Loaded Config object.

        Raises:
            ConfigError: If the file is missing, is not valid TOML, or does
                         not describe at least one usable account.
        """
        path = Path(path)
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {path}") from e
        except OSError as e:
            raise ConfigError(f"Failed to open config file: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file: {e}") from e

        config = cls._from_dict(data)
        config.path = path
        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """
        Create a Config object from a dictionary (parsed TOML).

        Raises:
            ConfigError: On missing or malformed sections.
        """
        config = cls(_document=data)

        # General settings
        general = data.get("general", {})
        config.general = GeneralConfig(
            idle_timeout=_seconds(general, "idle_timeout", DEFAULT_IDLE_TIMEOUT),
            restart_delay=_seconds(
                general, "restart_delay", DEFAULT_RESTART_DELAY, allow_zero=True
            ),
        )

        # Label mapping - a [labels] table replaces the defaults entirely
        labels = data.get("labels")
        if labels is not None:
            if not isinstance(labels, dict) or not all(isinstance(v, str) for v in labels.values()):
                raise ConfigError("[labels] must map mailbox names to label IDs")
            config.labels = dict(labels)

        # Accounts - each key under [accounts] is an account name
        accounts_data = data.get("accounts")
        if not isinstance(accounts_data, dict) or not accounts_data:
            raise ConfigError("IMAP credentials section [accounts] is empty or missing")
        for name, acct_data in accounts_data.items():
            config.accounts.append(_parse_account(name, acct_data))

        # OAuth client secret
        secrets = data.get("secrets")
        if not isinstance(secrets, dict) or not secrets:
            raise ConfigError("OAuth client secret section [secrets] is empty or missing")
        config.secrets = secrets

        tokens = data.get("tokens")
        config.tokens = dict(tokens) if isinstance(tokens, dict) and tokens else None

        return config

    def save_tokens(self, tokens: dict[str, Any]) -> None:
        """
        Write the [tokens] table back to the config file.

        The rest of the document is rewritten unchanged (comments are not
        preserved, as TOML writers do not keep them).
        """
        self.tokens = {k: v for k, v in tokens.items() if v is not None}
        self._document["tokens"] = self.tokens

        if self.path is None:
            logger.debug("Config has no path, not saving tokens")
            return

        # Replaced in one step: a failed write leaves the old file intact
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                tomli_w.dump(self._document, f)
            os.replace(tmp_path, self.path)
        except Exception:
            os.unlink(tmp_path)
            raise
        logger.debug(f"Saved tokens to {self.path}")


# =============================================================================
# Parsing Helpers
# =============================================================================

def _seconds(table: dict[str, Any], key: str, default: float, *, allow_zero: bool = False) -> float:
    """Read a duration in seconds from the [general] table."""
    value = table.get(key, default)
    valid = (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and (value >= 0 if allow_zero else value > 0)
    )
    if not valid:
        kind = "non-negative" if allow_zero else "positive"
        raise ConfigError(f"[general] {key} must be a {kind} number of seconds")
    return float(value)


def _parse_account(name: str, data: Any) -> Account:
    """
    Build an Account from its [accounts.NAME] table.

    The password comes from the table if present, otherwise from the
    system keyring.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Account '{name}' must be a table")

    host = data.get("host", "")
    username = data.get("username", "")
    if not host or not username:
        raise ConfigError(f"Account '{name}' needs both host and username")

    port = data.get("port", 993)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f"Account '{name}' has an invalid port: {port!r}")

    account = Account(
        name=name,
        host=host,
        port=port,
        username=username,
        mailbox=data.get("mailbox", "INBOX"),
    )

    password = data.get("password") or _keyring_password(account)
    if not password:
        raise ConfigError(
            f"No password for account '{name}'. Add one to the config file or set it with: "
            f"keyring set {account.keyring_service} {username}"
        )

    return replace(account, password=password)


def _keyring_password(account: Account) -> str | None:
    """Look up an account's password in the system keyring."""
    try:
        return keyring.get_password(account.keyring_service, account.username)
    except KeyringError as e:
        logger.warning(f"Keyring lookup failed for {account.name}: {e}")
        return None


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when there's an error loading or parsing configuration."""
    pass
