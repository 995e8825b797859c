# =============================================================================
# IMAP Client
# =============================================================================
# Provides an async IMAP client wrapper around aioimaplib, reduced to the
# handful of commands the relay needs.
#
# Key responsibilities:
#   - Connection management (implicit TLS connect, LOGIN, LOGOUT)
#   - SELECT with a fresh mailbox snapshot every time
#   - FETCH of a whole message by sequence number
#   - Silent \Deleted flagging by UID, and EXPUNGE
#   - IDLE, with server pushes forwarded to a registered callback
#
# Design notes:
#   - One IMAPClient belongs to exactly one session. It is never shared
#     between tasks and is useless after any protocol error or disconnect.
#   - Every command failure is raised as an IMAPError subclass. Callers
#     never have to inspect aioimaplib responses themselves.
#   - Untagged server data only reaches the callback while IDLE is active.
#     Data attached to a SELECT response is consumed by the SELECT itself.
# =============================================================================

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from aioimaplib import aioimaplib

from imap_relay.core import FetchedMessage, MailboxSnapshot

if TYPE_CHECKING:
    from imap_relay.core import Account

# Set up logging for this module
logger = logging.getLogger(__name__)


# Called with the raw push line, e.g. "4 EXISTS". Must not block.
MailboxUpdateCallback = Callable[[str], None]

# Untagged responses that mean "the mailbox may have changed"
_MAILBOX_UPDATE_RE = re.compile(r"^\*?\s*\d+\s+(EXISTS|EXPUNGE|RECENT|FETCH)\b", re.IGNORECASE)

# FETCH response header, e.g. "1 FETCH (UID 10 BODY[] {2048}"
_FETCH_HEADER_RE = re.compile(r"^(\d+)\s+FETCH\s*\(", re.IGNORECASE)
_FETCH_UID_RE = re.compile(r"\bUID\s+(\d+)", re.IGNORECASE)
_FETCH_FLAGS_RE = re.compile(r"\bFLAGS\s+\(([^)]*)\)", re.IGNORECASE)
_LITERAL_RE = re.compile(r"\{(\d+)\}\s*$")


def _quote_folder_name(name: str) -> str:
    """
    Quote an IMAP folder name if it contains special characters.

    IMAP folder names with spaces or special characters must be quoted.
    This function wraps folder names in double quotes and escapes
    any internal quotes or backslashes.
    """
    if ' ' in name or '"' in name or '\\' in name or any(c in name for c in '(){}[]'):
        escaped = name.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'
    return name


def _decode_line(line: bytes | bytearray | str) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def is_mailbox_update(line: bytes | bytearray | str) -> bool:
    """
    Check whether an untagged server push describes a mailbox change.

    Common notifications (aioimaplib may or may not keep the leading *):
        - "N EXISTS"  - N messages now exist
        - "N EXPUNGE" - message N was removed
        - "N RECENT"  - N messages are recent
        - "N FETCH (FLAGS ...)" - flags changed on message N

    Continuation lines ("+ idling") and aioimaplib's own markers are not
    mailbox updates.
    """
    return bool(_MAILBOX_UPDATE_RE.match(_decode_line(line).strip()))


@dataclass
class ConnectionState:
    """
    Tracks the current state of an IMAP connection.

    Attributes:
        connected: Whether we have an active connection.
        authenticated: Whether we've successfully logged in.
        selected_folder: Currently selected folder, if any.
        capabilities: Server capabilities (from the greeting).
        idling: Whether an IDLE command is outstanding.
    """
    connected: bool = False
    authenticated: bool = False
    selected_folder: str | None = None
    capabilities: list[str] = field(default_factory=list)
    idling: bool = False


class IMAPClient:
    """
    Async IMAP client for the relay.

    Usage:
        >>> client = IMAPClient(account, on_mailbox_update=slot.offer)
        >>> await client.connect()
        >>> await client.login()
        >>> snapshot = await client.select("INBOX")
        >>> message = await client.fetch_first()
        >>> await client.disconnect()

    Attributes:
        account: The Account this connection belongs to.
        state: Current connection state.
    """

    # Timeout for ordinary IMAP commands (seconds)
    TIMEOUT = 30

    # aioimaplib's own IDLE timer. The idle controller always ends IDLE
    # well before this; it only matters if the controller is never called.
    IDLE_TIMEOUT = 29 * 60

    # How long to wait for the tagged reply to DONE
    IDLE_DONE_TIMEOUT = 10

    def __init__(
        self,
        account: "Account",
        on_mailbox_update: MailboxUpdateCallback | None = None,
    ) -> None:
        """
        Initialize the IMAP client.

        Args:
            account: Account with the server address and credentials.
            on_mailbox_update: Called for every mailbox-change push received
                               while IDLE is active.
        """
        self.account = account
        self.state = ConnectionState()
        self.on_mailbox_update = on_mailbox_update
        self._client: aioimaplib.IMAP4_SSL | None = None
        self._idle: "IdleHandle | None" = None

    @property
    def is_connected(self) -> bool:
        """Check if client is connected and authenticated."""
        return self.state.connected and self.state.authenticated and self._client is not None

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """
        Open an implicit-TLS connection and wait for the server greeting.

        Raises:
            IMAPConnectionError: If unable to connect to the server.
        """
        logger.info(f"Connecting to {self.account.address}")

        try:
            self._client = aioimaplib.IMAP4_SSL(
                host=self.account.host,
                port=self.account.port,
                timeout=self.TIMEOUT,
            )
            await self._client.wait_hello_from_server()
        except asyncio.TimeoutError as e:
            raise IMAPConnectionError(
                f"Connection timed out to {self.account.address}"
            ) from e
        except OSError as e:
            raise IMAPConnectionError(
                f"Failed to connect to {self.account.address}: {e}"
            ) from e

        self.state.connected = True
        self.state.capabilities = list(self._client.protocol.capabilities)
        logger.debug(f"Server capabilities: {self.state.capabilities}")

    async def login(self) -> None:
        """
        Authenticate with the account's username and password.

        Raises:
            IMAPAuthenticationError: If the server rejects the credentials.
            IMAPConnectionError: If called before connect().
        """
        client = self._require_client()

        logger.debug(f"Authenticating as {self.account.username}")
        try:
            response = await client.login(self.account.username, self.account.password)
        except (asyncio.TimeoutError, aioimaplib.Error, OSError) as e:
            raise IMAPAuthenticationError(
                f"LOGIN failed for {self.account.username}: {e}"
            ) from e

        if response.result != "OK":
            raise IMAPAuthenticationError(
                f"Authentication failed for {self.account.username}: {response.lines}"
            )

        self.state.authenticated = True
        logger.debug("Authentication successful")

    async def disconnect(self) -> None:
        """
        Close the connection, sending LOGOUT if possible.

        Never raises: a connection that is being thrown away after an error
        may well refuse a clean LOGOUT.
        """
        if self._idle is not None:
            # DONE must go out before LOGOUT
            try:
                await self._idle.close()
            except IMAPIdleError as e:
                logger.warning(f"Error leaving IDLE: {e}")
            self._idle = None

        if self._client and self.state.connected:
            try:
                logger.debug("Sending LOGOUT")
                await asyncio.wait_for(self._client.logout(), timeout=self.TIMEOUT)
            except Exception as e:
                logger.warning(f"Error during logout: {e}")
        self._client = None
        self.state = ConnectionState()

    def _require_client(self) -> aioimaplib.IMAP4_SSL:
        if self._client is None or not self.state.connected:
            raise IMAPConnectionError(f"Not connected to {self.account.address}")
        return self._client

    async def _command(self, name: str, coro):
        """Run one aioimaplib command, turning every failure into IMAPCommandError."""
        try:
            response = await coro
        except (asyncio.TimeoutError, aioimaplib.Error, OSError) as e:
            raise IMAPCommandError(f"{name} error: {e}") from e

        if response.result != "OK":
            raise IMAPCommandError(f"{name} error: {response.result} {response.lines}")
        return response

    # =========================================================================
    # Mailbox Operations
    # =========================================================================

    async def select(self, mailbox: str) -> MailboxSnapshot:
        """
        SELECT a mailbox and report what is in it.

        Always issues a real SELECT. The message count is never served from
        a cache, because it can change between two calls.

        Raises:
            IMAPCommandError: If the server refuses the SELECT.
        """
        client = self._require_client()
        response = await self._command("SELECT", client.select(_quote_folder_name(mailbox)))

        snapshot = self._parse_select_response(mailbox, response)
        self.state.selected_folder = mailbox
        logger.debug(f"Selected {mailbox}: {snapshot.exists} messages")
        return snapshot

    def _parse_select_response(self, mailbox: str, response) -> MailboxSnapshot:
        """Parse a SELECT response into a MailboxSnapshot."""
        exists = 0
        uidvalidity = None
        uidnext = None

        for line in response.lines:
            line = _decode_line(line)

            match = re.search(r"(\d+)\s+EXISTS", line, re.IGNORECASE)
            if match:
                exists = int(match.group(1))

            match = re.search(r"UIDVALIDITY\s+(\d+)", line, re.IGNORECASE)
            if match:
                uidvalidity = int(match.group(1))

            match = re.search(r"UIDNEXT\s+(\d+)", line, re.IGNORECASE)
            if match:
                uidnext = int(match.group(1))

        return MailboxSnapshot(
            name=mailbox,
            exists=exists,
            uidvalidity=uidvalidity,
            uidnext=uidnext,
        )

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def fetch(self, sequence: int) -> FetchedMessage | None:
        """
        Fetch the whole raw message at a sequence number.

        BODY.PEEK[] is used so fetching does not set \\Seen on the source.

        Returns:
            The message, or None if the server returned nothing for that
            position (it was removed between SELECT and FETCH).

        Raises:
            IMAPCommandError: If the FETCH fails.
        """
        client = self._require_client()
        response = await self._command(
            "FETCH", client.fetch(str(sequence), "(UID FLAGS BODY.PEEK[])")
        )
        return self._parse_fetch_response(response)

    async def fetch_first(self) -> FetchedMessage | None:
        """Fetch the message at sequence number 1 (the oldest present)."""
        return await self.fetch(1)

    def _parse_fetch_response(self, response) -> FetchedMessage | None:
        """
        Pull the UID and raw body out of a single-message FETCH response.

        aioimaplib returns text lines and literals as separate items:
            b'1 FETCH (UID 10 FLAGS (\\Seen) BODY[] {2048}'
            bytearray(b'Return-Path: ...')      <- the {2048} literal
            b')'
            b'Fetch completed.'
        Some servers put the UID after the literal instead, so the UID is
        looked for on every text line of the FETCH.
        """
        in_fetch = False
        uid: int | None = None
        flags: frozenset[str] = frozenset()
        body: bytes | None = None
        expect_literal = False

        for item in response.lines:
            if expect_literal:
                body = bytes(item)
                expect_literal = False
                continue

            line = _decode_line(item)
            if not in_fetch:
                if not _FETCH_HEADER_RE.match(line):
                    continue
                in_fetch = True

            match = _FETCH_UID_RE.search(line)
            if match and uid is None:
                uid = int(match.group(1))

            match = _FETCH_FLAGS_RE.search(line)
            if match:
                flags = frozenset(match.group(1).split())

            if body is None:
                expect_literal = bool(_LITERAL_RE.search(line))

        if uid is None or body is None:
            return None
        return FetchedMessage(uid=uid, contents=body, flags=flags)

    async def store_deleted(self, uid: int) -> None:
        """
        Silently add \\Deleted to exactly one message, by UID.

        Raises:
            IMAPCommandError: If the STORE fails.
        """
        client = self._require_client()
        logger.debug(f"Flagging UID {uid} as deleted")
        await self._command(
            "STORE", client.uid("STORE", str(uid), "+FLAGS.SILENT (\\Deleted)")
        )

    async def expunge(self) -> None:
        """
        Permanently remove every message flagged \\Deleted.

        Raises:
            IMAPCommandError: If the EXPUNGE fails.
        """
        client = self._require_client()
        await self._command("EXPUNGE", client.expunge())

    # =========================================================================
    # IDLE Support
    # =========================================================================

    def supports_idle(self) -> bool:
        """Check if server supports IDLE command."""
        if not self._client:
            return False
        return self._client.has_capability("IDLE")

    async def idle(self) -> "IdleHandle":
        """
        Enter IDLE on the currently selected mailbox.

        Returns:
            An IdleHandle. Call close() then wait() on it before issuing
            any other command on this connection.

        Raises:
            IMAPIdleError: If the server does not support or refuses IDLE.
        """
        client = self._require_client()

        if not self.supports_idle():
            raise IMAPIdleError(f"{self.account.address} does not support IDLE")

        logger.debug(f"Entering IDLE on {self.state.selected_folder}")
        try:
            idle_task = await client.idle_start(timeout=self.IDLE_TIMEOUT)
        except (asyncio.TimeoutError, aioimaplib.Error, OSError) as e:
            raise IMAPIdleError(f"IDLE error: {e}") from e

        self.state.idling = True
        handle = IdleHandle(self, idle_task)
        handle.start()
        self._idle = handle
        return handle

    def _dispatch_push(self, push) -> None:
        """Forward mailbox-change lines from one server push to the callback."""
        if isinstance(push, (bytes, bytearray, str)):
            push = [push]

        for line in push:
            line = _decode_line(line).strip()
            if not is_mailbox_update(line):
                logger.debug(f"Ignoring server push: {line}")
                continue
            logger.debug(f"Mailbox update: {line}")
            if self.on_mailbox_update:
                self.on_mailbox_update(line)


class IdleHandle:
    """
    An outstanding IDLE command.

    While the handle is open a background task reads server pushes and
    hands mailbox changes to the client's callback. close() sends DONE;
    wait() waits for the server to complete the IDLE command.
    """

    # How often the push reader re-checks that IDLE is still pending
    PUSH_POLL_INTERVAL = 30

    def __init__(self, client: IMAPClient, idle_task: asyncio.Future) -> None:
        self._client = client
        self._idle_task = idle_task
        self._reader: asyncio.Task | None = None
        self._closed = False

    def start(self) -> None:
        self._reader = asyncio.create_task(
            self._read_pushes(),
            name=f"idle-push-{self._client.account.name}",
        )

    async def _read_pushes(self) -> None:
        imap = self._client._client
        while imap is not None and imap.has_pending_idle():
            try:
                push = await imap.wait_server_push(timeout=self.PUSH_POLL_INTERVAL)
            except asyncio.TimeoutError:
                continue
            self._client._dispatch_push(push)

    async def close(self) -> None:
        """
        Send DONE to end the IDLE command.

        Raises:
            IMAPIdleError: If the connection is gone or DONE cannot be sent.
        """
        if self._closed:
            return
        self._closed = True

        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass

        imap = self._client._client
        if imap is None:
            raise IMAPIdleError("Connection closed while idling")
        try:
            imap.idle_done()
        except (aioimaplib.Error, OSError) as e:
            raise IMAPIdleError(f"IDLE error: {e}") from e

    async def wait(self) -> None:
        """
        Wait for the server's tagged reply to DONE.

        Raises:
            IMAPIdleError: If the server fails the IDLE command or never
                           acknowledges DONE.
        """
        try:
            response = await asyncio.wait_for(
                self._idle_task, timeout=self._client.IDLE_DONE_TIMEOUT
            )
        except (asyncio.TimeoutError, aioimaplib.Error, OSError) as e:
            raise IMAPIdleError(f"IDLE error: {e}") from e
        finally:
            self._client.state.idling = False
            self._client._idle = None

        if response.result != "OK":
            raise IMAPIdleError(f"IDLE error: {response.result} {response.lines}")
        logger.debug("Left IDLE")


# =============================================================================
# Exceptions
# =============================================================================

class IMAPError(Exception):
    """Base exception for IMAP operations."""
    pass


class IMAPConnectionError(IMAPError):
    """Raised when unable to connect to IMAP server."""
    pass


class IMAPAuthenticationError(IMAPError):
    """Raised when IMAP authentication fails."""
    pass


class IMAPCommandError(IMAPError):
    """Raised when SELECT, FETCH, STORE or EXPUNGE fails."""
    pass


class IMAPIdleError(IMAPError):
    """Raised when entering or leaving IDLE fails."""
    pass
