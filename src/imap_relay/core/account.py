# =============================================================================
# Account Model
# =============================================================================
# Represents one source IMAP account: where to connect, who to log in as,
# and which mailbox to relay from.
#
# Accounts are immutable for the lifetime of the process. The supervisor
# owns them and hands each one, by reference, to exactly one session at a
# time.
#
# IMPORTANT: The password may come from the config file or from the system
# keyring. By the time an Account exists it has been resolved already, so
# the sync layer never needs to know where it came from.
# =============================================================================

from dataclasses import dataclass


@dataclass(frozen=True)
class Account:
    """
    Connection details for a source IMAP account.

    Attributes:
        name: Unique identifier for this account (the key in the config file).
              Used in log lines, task names and keyring lookups.
        host: Hostname of the IMAP server (e.g., "imap.example.com").
        port: Port for the IMAP connection. Implicit TLS is mandatory, so
              this is nearly always 993.
        username: Login name sent with the LOGIN command.
        password: Login password.
        mailbox: Name of the source mailbox to drain (default "INBOX").

    Example:
        >>> account = Account(
        ...     name="work",
        ...     host="imap.example.com",
        ...     username="me@example.com",
        ...     password="hunter2",
        ... )
        >>> account.address
        'imap.example.com:993'
    """

    name: str
    host: str
    username: str
    password: str = ""
    port: int = 993                     # Implicit TLS
    mailbox: str = "INBOX"

    @property
    def address(self) -> str:
        """The server address in host:port form."""
        return f"{self.host}:{self.port}"

    @property
    def keyring_service(self) -> str:
        """
        Returns the service name used for keyring password storage.

        Passwords can be managed with the keyring CLI:
            keyring set imap-relay:work me@example.com
        """
        return f"imap-relay:{self.name}"

    def __str__(self) -> str:
        return f"{self.name} <{self.username}@{self.address}>"

    def __repr__(self) -> str:
        # Never leak the password into logs
        return (
            f"Account(name={self.name!r}, username={self.username!r}, "
            f"imap={self.address}, mailbox={self.mailbox!r})"
        )
