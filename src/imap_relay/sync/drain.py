# =============================================================================
# Mailbox Drain Loop
# =============================================================================
# Empties the source mailbox one message at a time:
#
#   SELECT -> empty? done : FETCH 1 -> transfer -> repeat
#
# Sequence numbers shift down every time a message is expunged, so the loop
# always asks for position 1 again instead of walking an offset. The count
# is re-read from a fresh SELECT on every iteration for the same reason.
#
# Messages are therefore moved oldest-present-first, in the server's own
# ordering. The first failure ends the pass: after a failed transfer the
# connection may be in an unknown state.
# =============================================================================

import logging
from typing import TYPE_CHECKING, Callable

from imap_relay.imap import IMAPCommandError

if TYPE_CHECKING:
    from imap_relay.core import Account, FetchedMessage
    from imap_relay.imap import IMAPClient
    from imap_relay.sync.transfer import TransferPipeline

logger = logging.getLogger(__name__)


async def drain_mailbox(
    connection: "IMAPClient",
    pipeline: "TransferPipeline",
    account: "Account",
    on_transferred: Callable[["FetchedMessage"], None] | None = None,
) -> int:
    """
    Transfer every message in the account's mailbox.

    Args:
        connection: An authenticated connection.
        pipeline: Where each fetched message is sent.
        account: The account being drained (mailbox name, log context).
        on_transferred: Called after each message is imported and deleted.

    Returns:
        Number of messages transferred in this pass.

    Raises:
        IMAPCommandError: If SELECT, FETCH, STORE or EXPUNGE fails.
        TransferError: If Gmail did not accept a message.
    """
    transferred = 0
    expunged_uid: int | None = None

    while True:
        snapshot = await connection.select(account.mailbox)
        if snapshot.is_empty:
            break

        message = await connection.fetch_first()
        if message is None:
            # Raced with another client emptying the mailbox; the next pass
            # will see whatever is still there.
            logger.debug(f"{account.name}: FETCH returned nothing with {snapshot.exists} present")
            break

        if message.is_deleted:
            if message.uid == expunged_uid:
                raise IMAPCommandError(f"EXPUNGE did not remove UID {message.uid}")
            expunged_uid = message.uid
            logger.info(f"{account.name}: expunging already imported UID {message.uid}")
            await connection.expunge()
            continue

        logger.info(
            f"Importing message received by {account.username} "
            f"(size {message.size_kb:.1f}K)"
        )
        await pipeline.transfer(message, connection)
        transferred += 1
        if on_transferred:
            on_transferred(message)

    if transferred:
        logger.info(f"{account.name}: {account.mailbox} drained, {transferred} messages relayed")
    return transferred
