# =============================================================================
# Account Supervisor
# =============================================================================
# Keeps every configured account relaying for the lifetime of the process.
#
# Key responsibilities:
#   - One asyncio task per account, fully independent of the others
#   - Run a fresh SessionManager; when it ends, sleep a fixed cooldown and
#     start another one from scratch
#   - Graceful shutdown of all account tasks
#
# Design notes:
#   - This is the only retry mechanism in the relay. There is no backoff
#     and no restart limit: a network blip, a server restart and a wrong
#     password are all handled the same way, forever, at the same cadence.
#     A permanently broken account shows up only in the logs.
#   - The cooldown is injectable so tests can restart in milliseconds.
# =============================================================================

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

from imap_relay.imap import DEFAULT_IDLE_TIMEOUT, IMAPClient
from imap_relay.sync.session import ConnectionFactory, SessionManager, SessionResult
from imap_relay.sync.transfer import TransferPipeline, resolve_label_ids

if TYPE_CHECKING:
    from imap_relay.core import Account
    from imap_relay.gmail import GmailImporter

logger = logging.getLogger(__name__)


# How long to wait before starting a new session after one ends (seconds)
DEFAULT_RESTART_DELAY = 5 * 60

SessionFactory = Callable[[], SessionManager]


class AccountSupervisor:
    """
    Restarts one account's session forever.

    Attributes:
        account: The supervised account.
        restart_delay: Cooldown between sessions, in seconds.
        sessions_started: How many sessions have been started so far.
        last_result: Result of the most recent finished session.
    """

    def __init__(
        self,
        account: "Account",
        session_factory: SessionFactory,
        restart_delay: float = DEFAULT_RESTART_DELAY,
    ) -> None:
        self.account = account
        self.restart_delay = restart_delay
        self.sessions_started = 0
        self.last_result: SessionResult | None = None
        self._session_factory = session_factory

    async def run(self) -> None:
        """Run sessions back to back, with the cooldown in between. Never returns."""
        logger.info(f"Starting relay for {self.account}")

        while True:
            self.sessions_started += 1
            session = self._session_factory()
            self.last_result = await session.run()

            # Errored out. Cool down and try again.
            logger.warning(
                f"{self.account.name}: session ended after relaying "
                f"{self.last_result.transferred} messages, "
                f"reconnecting in {self.restart_delay}s"
            )
            await asyncio.sleep(self.restart_delay)


class Supervisor:
    """
    Owns the per-account tasks.

    Usage:
        >>> supervisor = Supervisor(accounts, importer)
        >>> await supervisor.start()
        >>> # ... later ...
        >>> await supervisor.stop()

    Attributes:
        accounts: Accounts to relay.
        importer: Gmail importer shared by all accounts.
        labels: Source mailbox -> Gmail label mapping.
        idle_timeout: IDLE deadline passed to every session.
        restart_delay: Cooldown passed to every account supervisor.
    """

    # How long stop() waits for tasks to wind down (seconds)
    STOP_TIMEOUT = 5.0

    def __init__(
        self,
        accounts: Iterable["Account"],
        importer: "GmailImporter",
        *,
        labels: Mapping[str, str] | None = None,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        connection_factory: ConnectionFactory = IMAPClient,
    ) -> None:
        self.accounts = list(accounts)
        self.importer = importer
        self.labels = labels
        self.idle_timeout = idle_timeout
        self.restart_delay = restart_delay
        self._connection_factory = connection_factory
        self._tasks: dict[str, asyncio.Task] = {}   # account name -> task
        self.account_supervisors: dict[str, AccountSupervisor] = {}

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def _session_factory(self, account: "Account") -> SessionFactory:
        pipeline = TransferPipeline(self.importer, resolve_label_ids(account.mailbox, self.labels))

        def build() -> SessionManager:
            return SessionManager(
                account,
                pipeline,
                idle_timeout=self.idle_timeout,
                connection_factory=self._connection_factory,
            )

        return build

    async def start(self) -> None:
        """Start one relay task per account."""
        if self._tasks:
            logger.warning("Supervisor already running")
            return

        logger.info(f"Starting relay for {len(self.accounts)} accounts")
        for account in self.accounts:
            supervisor = AccountSupervisor(
                account,
                self._session_factory(account),
                restart_delay=self.restart_delay,
            )
            self.account_supervisors[account.name] = supervisor
            self._tasks[account.name] = asyncio.create_task(
                supervisor.run(),
                name=f"relay-{account.name}",
            )

    async def stop(self) -> None:
        """Cancel every account task and wait for connections to close."""
        if not self._tasks:
            return

        logger.info("Stopping relay")
        for task in self._tasks.values():
            task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*self._tasks.values(), return_exceptions=True),
                timeout=self.STOP_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning("Relay tasks did not stop cleanly")

        self._tasks.clear()
