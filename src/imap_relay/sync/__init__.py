# =============================================================================
# Sync Module
# =============================================================================
# The relay engine, leaves first:
#   - TransferPipeline: import one message, delete it on confirmed success
#   - drain_mailbox: empty the source mailbox through the pipeline
#   - SessionManager: one connection's connect/login/drain/idle cycle
#   - AccountSupervisor / Supervisor: restart sessions forever, one task
#     per account
# =============================================================================

from imap_relay.sync.transfer import (
    DEFAULT_LABELS,
    TransferError,
    TransferPipeline,
    resolve_label_ids,
)
from imap_relay.sync.drain import drain_mailbox
from imap_relay.sync.session import (
    SessionManager,
    SessionResult,
    SessionState,
)
from imap_relay.sync.supervisor import (
    DEFAULT_RESTART_DELAY,
    AccountSupervisor,
    Supervisor,
)

__all__ = [
    # Transfer
    "DEFAULT_LABELS",
    "TransferError",
    "TransferPipeline",
    "resolve_label_ids",
    # Drain
    "drain_mailbox",
    # Session
    "SessionManager",
    "SessionResult",
    "SessionState",
    # Supervisor
    "DEFAULT_RESTART_DELAY",
    "AccountSupervisor",
    "Supervisor",
]
