# =============================================================================
# Transfer Pipeline
# =============================================================================
# Moves one fetched message from the source mailbox into Gmail.
#
#   1. Import the raw bytes into Gmail
#   2. Only if Gmail answered 200: UID STORE +FLAGS.SILENT (\Deleted)
#   3. EXPUNGE
#
# A message is deleted from the source if and only if Gmail confirmed the
# import of exactly these bytes. Any other outcome leaves the message where
# it is, to be fetched again by the next session.
#
# If STORE succeeds but EXPUNGE fails, the message stays flagged \Deleted
# and disappears on the next successful EXPUNGE. The drain loop recognises
# such leftovers by their flag and expunges them without importing again.
# =============================================================================

import logging
from typing import TYPE_CHECKING, Iterable, Mapping

from imap_relay.gmail import GmailError

if TYPE_CHECKING:
    from imap_relay.core import FetchedMessage
    from imap_relay.gmail import GmailImporter
    from imap_relay.imap import IMAPClient

logger = logging.getLogger(__name__)


# Source mailbox -> Gmail label
DEFAULT_LABELS: dict[str, str] = {
    "INBOX": "INBOX",
    "Junk": "SPAM",
}

# Relayed mail always arrives unread
UNREAD_LABEL = "UNREAD"


def resolve_label_ids(mailbox: str, labels: Mapping[str, str] | None = None) -> list[str]:
    """
    Work out the Gmail labels for messages relayed from `mailbox`.

    Unmapped mailboxes land in the Gmail inbox.

    Example:
        >>> resolve_label_ids("Junk")
        ['SPAM', 'UNREAD']
    """
    labels = DEFAULT_LABELS if labels is None else labels
    return [labels.get(mailbox, "INBOX"), UNREAD_LABEL]


class TransferPipeline:
    """
    Imports messages into Gmail and deletes them from the source on success.

    One pipeline is built per account (label IDs depend on the source
    mailbox); the importer behind it is shared.

    Attributes:
        importer: The Gmail import client.
        label_ids: Labels applied to every imported message.
    """

    def __init__(self, importer: "GmailImporter", label_ids: Iterable[str]) -> None:
        self.importer = importer
        self.label_ids = list(label_ids)

    async def transfer(self, message: "FetchedMessage", connection: "IMAPClient") -> None:
        """
        Import `message` and, once Gmail confirms it, delete it from the source.

        Raises:
            TransferError: If the import failed or Gmail answered anything
                           but 200. Nothing was deleted.
            IMAPCommandError: If STORE or EXPUNGE failed after a successful
                              import. The connection must be abandoned.
        """
        try:
            result = await self.importer.import_message(message.contents, self.label_ids)
        except GmailError as e:
            raise TransferError(f"Import of UID {message.uid} failed: {e}") from e

        if not result.ok:
            raise TransferError(
                f"Gmail returned status code {result.status_code} for UID {message.uid}",
                status_code=result.status_code,
            )

        await connection.store_deleted(message.uid)
        await connection.expunge()
        logger.debug(f"UID {message.uid} imported and expunged")


# =============================================================================
# Exceptions
# =============================================================================

class TransferError(Exception):
    """
    Raised when a message could not be imported into Gmail.

    Attributes:
        status_code: HTTP status Gmail answered with, if it answered.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
