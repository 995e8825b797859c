# =============================================================================
# imap-relay Core Module
# =============================================================================
# Core domain models. These are plain Python dataclasses with no external
# dependencies, so they can be imported anywhere without causing circular
# imports.
#
#   - Account: A source IMAP account (address and credentials)
#   - FetchedMessage: One raw message pulled from the source mailbox
#   - MailboxSnapshot: The result of selecting a mailbox
# =============================================================================

from imap_relay.core.account import Account
from imap_relay.core.message import FetchedMessage, MailboxSnapshot

__all__ = [
    "Account",
    "FetchedMessage",
    "MailboxSnapshot",
]
