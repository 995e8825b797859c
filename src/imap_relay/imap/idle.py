# =============================================================================
# IDLE Controller
# =============================================================================
# Waits for the source mailbox to change once it has been drained.
#
# Key responsibilities:
#   - Put the connection into IDLE
#   - Block until the server pushes a mailbox change or a deadline passes
#   - Always end IDLE (DONE + tagged reply) before handing the connection
#     back, since most servers reject commands issued while idling
#
# Design notes:
#   - Server pushes arrive on a callback that must never block. They are
#     handed over through a NotificationSlot: one pending notification at
#     most, later ones dropped while it is still unread. Nothing is lost
#     by dropping, because every wake-up is followed by a fresh SELECT.
#   - The deadline is a safety net against servers that silently stop
#     pushing. RFC 2177 asks clients to re-IDLE at least every 29 minutes;
#     we use a far more conservative 5 minutes.
# =============================================================================

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from imap_relay.imap.client import IMAPClient

logger = logging.getLogger(__name__)


# How long to IDLE before waking up anyway (seconds)
DEFAULT_IDLE_TIMEOUT = 5 * 60


class NotificationSlot:
    """
    A one-element hand-off for change notifications.

    offer() is called from the server-push callback and never blocks: if a
    notification is already pending, the new one is dropped. take() reads
    and clears the pending notification, waiting up to a timeout for one.

    Usage:
        >>> slot = NotificationSlot()
        >>> slot.offer("3 EXISTS")
        True
        >>> slot.offer("4 EXISTS")   # already full, dropped
        False
        >>> await slot.take(timeout=1)
        '3 EXISTS'
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._pending: str | None = None

    @property
    def is_pending(self) -> bool:
        return self._event.is_set()

    def offer(self, notification: str) -> bool:
        """Store a notification unless one is already pending."""
        if self._event.is_set():
            return False
        self._pending = notification
        self._event.set()
        return True

    def clear(self) -> str | None:
        """Remove and return the pending notification, if any."""
        notification = self._pending
        self._pending = None
        self._event.clear()
        return notification

    async def take(self, timeout: float) -> str | None:
        """
        Wait up to `timeout` seconds for a notification and consume it.

        Returns:
            The notification, or None if the timeout elapsed first.
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self.clear()


class IdleController:
    """
    Blocks a drained session until its mailbox changes.

    Usage:
        >>> slot = NotificationSlot()
        >>> client = IMAPClient(account, on_mailbox_update=slot.offer)
        >>> controller = IdleController(slot, timeout=300)
        >>> changed = await controller.wait_for_change(client)

    Attributes:
        slot: The slot the connection's push callback writes into.
        timeout: Deadline for a single IDLE, in seconds.
    """

    def __init__(self, slot: NotificationSlot, timeout: float = DEFAULT_IDLE_TIMEOUT) -> None:
        self.slot = slot
        self.timeout = timeout

    async def wait_for_change(self, connection: "IMAPClient") -> bool:
        """
        IDLE until a change notification arrives or the deadline passes.

        Any notification still pending from before this call is discarded:
        it predates the SELECT that found the mailbox empty.

        Returns:
            True if woken by a notification, False on timeout.

        Raises:
            IMAPIdleError: If IDLE cannot be entered or cleanly left. The
                           connection must not be used afterwards.
        """
        self.slot.clear()

        handle = await connection.idle()
        try:
            notification = await self.slot.take(self.timeout)
        finally:
            # Also on cancellation: stop the push reader and send DONE
            await handle.close()

        if notification is None:
            logger.debug(f"No mailbox update after {self.timeout}s, refreshing")
        else:
            logger.debug(f"Woken by mailbox update: {notification}")

        await handle.wait()
        return notification is not None
