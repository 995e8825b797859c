# =============================================================================
# IMAP Module
# =============================================================================
# Handles all IMAP (Internet Message Access Protocol) operations:
#   - Connecting to IMAP servers over implicit TLS
#   - Selecting the source mailbox
#   - Fetching whole raw messages
#   - Flagging and expunging transferred messages
#   - IMAP IDLE for push notifications
#
# This module uses aioimaplib for async IMAP operations, so one process can
# keep a connection open for every configured account at once.
# =============================================================================

from imap_relay.imap.client import (
    IMAPClient,
    IdleHandle,
    IMAPError,
    IMAPConnectionError,
    IMAPAuthenticationError,
    IMAPCommandError,
    IMAPIdleError,
    ConnectionState,
    is_mailbox_update,
)
from imap_relay.imap.idle import (
    DEFAULT_IDLE_TIMEOUT,
    IdleController,
    NotificationSlot,
)

__all__ = [
    # Client
    "IMAPClient",
    "IdleHandle",
    "IMAPError",
    "IMAPConnectionError",
    "IMAPAuthenticationError",
    "IMAPCommandError",
    "IMAPIdleError",
    "ConnectionState",
    "is_mailbox_update",
    # IDLE
    "DEFAULT_IDLE_TIMEOUT",
    "IdleController",
    "NotificationSlot",
]
