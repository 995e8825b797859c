# =============================================================================
# Message Model
# =============================================================================
# The relay never interprets message contents. A message is just a UID plus
# the raw RFC 822 bytes exactly as the source server returned them, headers
# and body together.
#
# A FetchedMessage is created by a FETCH, consumed exactly once by the
# transfer pipeline, then discarded. It is never mutated.
# =============================================================================

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FetchedMessage:
    """
    A message fetched from the source mailbox.

    Attributes:
        uid: IMAP UID of the message, scoped to the selected mailbox.
             Stable across sessions (unlike the sequence number).
        contents: The complete original message as raw bytes.
        flags: IMAP flags at fetch time (e.g. {"\\Seen"}).
    """
    uid: int
    contents: bytes
    flags: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_deleted(self) -> bool:
        """
        True if the message is already flagged \\Deleted.

        This only happens when an earlier session imported it and then
        failed to EXPUNGE.
        """
        return any(flag.lower() == "\\deleted" for flag in self.flags)

    @property
    def size(self) -> int:
        """Size of the raw message in bytes."""
        return len(self.contents)

    @property
    def size_kb(self) -> float:
        """Size in kibibytes, for progress logging."""
        return self.size / 1024

    def __repr__(self) -> str:
        return f"FetchedMessage(uid={self.uid}, size={self.size})"


@dataclass(frozen=True)
class MailboxSnapshot:
    """
    What a SELECT told us about the mailbox.

    Snapshots are transient: the message count can change between two
    SELECTs, so a new one is taken on every drain iteration.

    Attributes:
        name: The selected mailbox.
        exists: Number of messages currently in the mailbox.
        uidvalidity: UIDVALIDITY reported by the server, if any.
        uidnext: Predicted next UID, if reported.
    """
    name: str
    exists: int
    uidvalidity: int | None = None
    uidnext: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.exists <= 0
