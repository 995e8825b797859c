# =============================================================================
# Gmail Module
# =============================================================================
# The destination side of the relay:
#   - OAuth 2.0 consent flow and token refresh
#   - users.messages.import uploads of raw messages
#
# Everything talks HTTP through httpx, so a single AsyncClient (and its
# connection pool) is shared by the token endpoint and the upload endpoint.
# =============================================================================

from imap_relay.gmail.client import (
    GmailImporter,
    GmailError,
    GmailImportError,
    ImportResult,
)
from imap_relay.gmail.oauth import (
    ClientSecret,
    OAuthError,
    TokenProvider,
    TokenSet,
    authorize_interactive,
)

__all__ = [
    # Import
    "GmailImporter",
    "GmailError",
    "GmailImportError",
    "ImportResult",
    # OAuth
    "ClientSecret",
    "OAuthError",
    "TokenProvider",
    "TokenSet",
    "authorize_interactive",
]
