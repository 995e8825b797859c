# =============================================================================
# Gmail Import Client
# =============================================================================
# Imports raw RFC 822 messages into a Gmail mailbox via the Gmail API's
# users.messages.import method.
#
# Import (unlike insert) runs Gmail's normal delivery processing: spam
# classification, calendar invitation handling, threading. Unlike sending,
# it keeps the message byte-for-byte.
#
# Design notes:
#   - The message is sent as a multipart/related upload (JSON metadata
#     part + message/rfc822 part), which is the only upload form that can
#     carry labelIds alongside the raw message.
#   - internalDateSource=dateHeader dates the message by its own Date
#     header, so relayed mail sorts chronologically in Gmail.
#   - The importer is stateless apart from the shared token provider and
#     may be used by every account task at once.
# =============================================================================

import json
import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

import httpx

from imap_relay.gmail.oauth import OAuthError

if TYPE_CHECKING:
    from imap_relay.gmail.oauth import TokenProvider

logger = logging.getLogger(__name__)


IMPORT_URL = "https://gmail.googleapis.com/upload/gmail/v1/users/{user_id}/messages/import"


@dataclass(frozen=True)
class ImportResult:
    """
    Outcome of one import call that reached the API.

    Attributes:
        status_code: HTTP status returned by Gmail.
        message_id: Gmail's ID for the new message, on success.
        detail: Error text from the response body, on failure.
    """
    status_code: int
    message_id: str | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        # Only a plain 200 confirms the message was stored
        return self.status_code == 200


class GmailImporter:
    """
    Imports raw messages into one Gmail account.

    Usage:
        >>> async with GmailImporter(token_provider) as gmail:
        ...     result = await gmail.import_message(raw, ["INBOX", "UNREAD"])
        ...     result.ok
        True

    Attributes:
        tokens: Supplies bearer tokens.
        user_id: Gmail user to import into ("me" = the authorized user).
    """

    # Uploads can be large; allow generous time for the whole request
    TIMEOUT = 120.0

    def __init__(
        self,
        tokens: "TokenProvider",
        *,
        http: httpx.AsyncClient | None = None,
        user_id: str = "me",
    ) -> None:
        self.tokens = tokens
        self.user_id = user_id
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=self.TIMEOUT)

    async def __aenter__(self) -> "GmailImporter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this importer created it."""
        if self._owns_http:
            await self._http.aclose()

    async def import_message(self, raw: bytes, label_ids: Iterable[str]) -> ImportResult:
        """
        Import one raw message.

        A 401 answer triggers a single token refresh and retry.

        Args:
            raw: The complete RFC 822 message.
            label_ids: Gmail label IDs to apply (e.g. ["INBOX", "UNREAD"]).

        Returns:
            ImportResult with the HTTP status. The caller decides what a
            non-200 status means.

        Raises:
            GmailImportError: If the request never got an HTTP answer
                              (network error, timeout, token failure).
        """
        content_type, body = build_import_body(raw, label_ids)

        token = await self._access_token()
        result = await self._post(token, content_type, body)
        if result.status_code == 401:
            logger.info("Gmail rejected the access token, refreshing and retrying")
            token = await self._access_token(rejected=token)
            result = await self._post(token, content_type, body)

        if result.ok:
            logger.debug(f"Imported as Gmail message {result.message_id}")
        else:
            logger.error(f"Gmail returned status code: {result.status_code} {result.detail}")
        return result

    async def _access_token(self, rejected: str | None = None) -> str:
        try:
            return await self.tokens.get_access_token(rejected=rejected)
        except OAuthError as e:
            raise GmailImportError(f"Could not obtain Gmail access token: {e}") from e

    async def _post(self, token: str, content_type: str, body: bytes) -> ImportResult:
        try:
            response = await self._http.post(
                IMPORT_URL.format(user_id=self.user_id),
                params={
                    "uploadType": "multipart",
                    "internalDateSource": "dateHeader",
                    "neverMarkSpam": "false",
                    "processForCalendar": "true",
                    "deleted": "false",
                },
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": content_type,
                },
                content=body,
            )
        except httpx.HTTPError as e:
            raise GmailImportError(f"Error uploading to Gmail: {e}") from e

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> ImportResult:
        if response.status_code != 200:
            return ImportResult(status_code=response.status_code, detail=response.text[:500])
        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        return ImportResult(status_code=200, message_id=message_id)


def build_import_body(raw: bytes, label_ids: Iterable[str]) -> tuple[str, bytes]:
    """
    Encode a multipart/related upload body.

    Returns:
        (content_type header value, body bytes)
    """
    boundary = f"imap-relay-{secrets.token_hex(16)}"
    metadata = json.dumps({"labelIds": list(label_ids)}).encode("utf-8")

    delimiter = f"--{boundary}\r\n".encode("ascii")
    body = b"".join([
        delimiter,
        b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
        metadata,
        b"\r\n",
        delimiter,
        b"Content-Type: message/rfc822\r\n\r\n",
        raw,
        b"\r\n",
        f"--{boundary}--\r\n".encode("ascii"),
    ])
    return f'multipart/related; boundary="{boundary}"', body


# =============================================================================
# Exceptions
# =============================================================================

class GmailError(Exception):
    """Base exception for Gmail operations."""
    pass


class GmailImportError(GmailError):
    """Raised when an import request gets no HTTP answer."""
    pass
