# =============================================================================
# Session Manager
# =============================================================================
# Owns one IMAP connection from open to close:
#
#   CONNECTING -> AUTHENTICATING -> DRAINING <-> IDLING
#        |              |              |           |
#        +--------------+------> CLOSED <----------+
#
# Every failure is terminal for the session. The connection is closed
# whatever the cause, and the error is handed back to the caller (the
# account supervisor), which decides when to try again. There is no retry
# in here.
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Callable

from imap_relay.imap import (
    DEFAULT_IDLE_TIMEOUT,
    IMAPClient,
    IdleController,
    NotificationSlot,
)
from imap_relay.sync.drain import drain_mailbox

if TYPE_CHECKING:
    from imap_relay.core import Account, FetchedMessage
    from imap_relay.imap.client import MailboxUpdateCallback
    from imap_relay.sync.transfer import TransferPipeline

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle state of a session."""
    NEW = auto()             # Not started yet
    CONNECTING = auto()      # Opening the TLS connection
    AUTHENTICATING = auto()  # Sending LOGIN
    DRAINING = auto()        # Moving messages to Gmail
    IDLING = auto()          # Waiting in IDLE for new mail
    CLOSED = auto()          # Connection released


# Builds the connection for a session. IMAPClient itself fits.
ConnectionFactory = Callable[["Account", "MailboxUpdateCallback"], IMAPClient]


@dataclass
class SessionResult:
    """
    How a session ended.

    Attributes:
        error: The exception that closed the session.
        state: The state the session was in when it failed.
        transferred: Messages relayed during the session.
        drain_passes: Completed drain passes.
    """
    error: Exception | None = None
    state: SessionState = SessionState.NEW
    transferred: int = 0
    drain_passes: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class SessionManager:
    """
    Runs one connection's connect / login / drain / idle cycle.

    A SessionManager is single-use: the supervisor builds a fresh one for
    every attempt, so nothing from a failed connection carries over.

    Usage:
        >>> session = SessionManager(account, pipeline, idle_timeout=300)
        >>> result = await session.run()   # returns only when it fails
        >>> result.error
        IMAPConnectionError(...)

    Attributes:
        account: The account this session serves.
        pipeline: Transfers each fetched message.
        state: Current lifecycle state.
    """

    def __init__(
        self,
        account: "Account",
        pipeline: "TransferPipeline",
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        connection_factory: ConnectionFactory = IMAPClient,
    ) -> None:
        self.account = account
        self.pipeline = pipeline
        self.idle_timeout = idle_timeout
        self.state = SessionState.NEW
        self._connection_factory = connection_factory
        self._result = SessionResult()

    def _count_transfer(self, message: "FetchedMessage") -> None:
        self._result.transferred += 1

    def _enter(self, state: SessionState) -> None:
        logger.debug(f"{self.account.name}: {self.state.name} -> {state.name}")
        self.state = state

    async def run(self) -> SessionResult:
        """
        Run the session until something fails.

        Returns:
            SessionResult describing the failure. Cancellation is not a
            failure: it propagates after the connection is closed.
        """
        if self.state is not SessionState.NEW:
            raise RuntimeError("SessionManager instances cannot be reused")

        slot = NotificationSlot()
        connection = self._connection_factory(self.account, slot.offer)
        idle = IdleController(slot, timeout=self.idle_timeout)
        result = self._result

        try:
            self._enter(SessionState.CONNECTING)
            await connection.connect()

            self._enter(SessionState.AUTHENTICATING)
            await connection.login()
            logger.info(f"{self.account.name}: logged in to {self.account.address}")

            while True:
                self._enter(SessionState.DRAINING)
                await drain_mailbox(connection, self.pipeline, self.account, self._count_transfer)
                result.drain_passes += 1

                self._enter(SessionState.IDLING)
                await idle.wait_for_change(connection)

        except asyncio.CancelledError:
            logger.debug(f"{self.account.name}: session cancelled")
            raise

        except Exception as e:
            result.error = e
            result.state = self.state
            logger.error(
                f"{self.account.name}: session failed while {self.state.name.lower()}: "
                f"{type(e).__name__}: {e}"
            )

        finally:
            self._enter(SessionState.CLOSED)
            await connection.disconnect()

        return result
