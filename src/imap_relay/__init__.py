# =============================================================================
# imap-relay: Push IMAP mail into Gmail as it arrives
# =============================================================================
#
# imap-relay keeps a connection open to one or more IMAP mailboxes, waits
# for new mail with IMAP IDLE, and imports every message into Gmail through
# the Gmail API. A message is deleted from its source only after Gmail has
# confirmed the import.
#
# Features:
#   - IMAP over implicit TLS, one connection per account
#   - Sub-second pickup of new mail via IDLE
#   - Gmail import with the original Date header and per-mailbox labels
#   - Endless automatic reconnection after any failure
#   - Passwords in the config file or the system keyring
#
# =============================================================================

__version__ = "0.1.0"
__app_name__ = "imap-relay"

# Main entry point - this is what gets called by the 'imap-relay' command
from imap_relay.app import main

__all__ = ["main", "__version__", "__app_name__"]
