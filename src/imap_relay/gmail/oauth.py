# =============================================================================
# Gmail OAuth Credentials
# =============================================================================
# Obtains and refreshes the OAuth 2.0 tokens used to call the Gmail API.
#
# Key responsibilities:
#   - Parse the client secret exactly as Google's console downloads it
#   - Run the installed-app consent flow the first time (print a URL, read
#     the authorization code back from the terminal)
#   - Refresh the access token shortly before it expires
#   - Hand new tokens to a callback so they can be written back to config
#
# Design notes:
#   - One TokenProvider is shared by every account task. Refreshes are
#     serialised with an asyncio.Lock so concurrent imports trigger a single
#     request to the token endpoint.
#   - Only the gmail.insert scope is requested: the relay can add messages
#     to the mailbox and do nothing else.
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


GMAIL_INSERT_SCOPE = "https://www.googleapis.com/auth/gmail.insert"
DEFAULT_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Refresh this long before the access token actually expires
EXPIRY_LEEWAY = timedelta(seconds=60)


@dataclass(frozen=True)
class ClientSecret:
    """
    An OAuth client registered in the Google Cloud console.

    Attributes:
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        auth_uri: Consent page URL.
        token_uri: Token endpoint URL.
        redirect_uri: Where Google sends the browser after consent.
    """
    client_id: str
    client_secret: str
    auth_uri: str = DEFAULT_AUTH_URI
    token_uri: str = DEFAULT_TOKEN_URI
    redirect_uri: str = "http://localhost"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientSecret":
        """
        Build from a client secret document.

        Accepts the file as downloaded ({"installed": {...}} or
        {"web": {...}}) as well as the inner table on its own.

        Raises:
            OAuthError: If client_id or client_secret is missing.
        """
        inner = data.get("installed") or data.get("web") or data
        try:
            client_id = inner["client_id"]
            client_secret = inner["client_secret"]
        except KeyError as e:
            raise OAuthError(f"Client secret is missing {e.args[0]!r}") from e

        redirect_uris = inner.get("redirect_uris") or ["http://localhost"]
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            auth_uri=inner.get("auth_uri", DEFAULT_AUTH_URI),
            token_uri=inner.get("token_uri", DEFAULT_TOKEN_URI),
            redirect_uri=redirect_uris[0],
        )


@dataclass(frozen=True)
class TokenSet:
    """
    An access token plus the refresh token used to renew it.

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Long-lived token for obtaining new access tokens.
        expiry: When access_token stops working (UTC), if known.
        token_type: Always "Bearer" for Google.
    """
    access_token: str
    refresh_token: str = ""
    expiry: datetime | None = None
    token_type: str = "Bearer"

    def expires_soon(self, now: datetime | None = None) -> bool:
        """True if the access token is missing or about to expire."""
        if not self.access_token:
            return True
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry - EXPIRY_LEEWAY

    @classmethod
    def from_response(cls, data: dict[str, Any], previous: "TokenSet | None" = None) -> "TokenSet":
        """
        Build from a token endpoint response.

        Refresh responses usually omit refresh_token; the previous one is
        kept in that case.
        """
        access_token = data.get("access_token")
        if not access_token:
            raise OAuthError("No access token in token endpoint response")

        expiry = None
        if "expires_in" in data:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))

        refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else "")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
            token_type=data.get("token_type", "Bearer"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenSet":
        """Build from the [tokens] table of the config file."""
        expiry = data.get("expiry")
        if isinstance(expiry, str):
            expiry = datetime.fromisoformat(expiry)
        if isinstance(expiry, datetime) and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            expiry=expiry,
            token_type=data.get("token_type", "Bearer"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a TOML-serialisable dictionary."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
        }
        if self.expiry is not None:
            data["expiry"] = self.expiry.isoformat()
        return data


# Called with every newly obtained TokenSet
TokenCallback = Callable[[TokenSet], None]


def authorization_url(secret: ClientSecret) -> str:
    """Build the consent page URL for the installed-app flow."""
    params = {
        "client_id": secret.client_id,
        "redirect_uri": secret.redirect_uri,
        "response_type": "code",
        "scope": GMAIL_INSERT_SCOPE,
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{secret.auth_uri}?{urlencode(params)}"


async def _post_token_endpoint(
    secret: ClientSecret,
    payload: dict[str, str],
    http: httpx.AsyncClient,
) -> dict[str, Any]:
    try:
        response = await http.post(secret.token_uri, data=payload)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        logger.error(f"HTTP {status} error from token endpoint: {e.response.text}")
        if status == 400:
            raise OAuthError("Invalid refresh token or client credentials") from e
        raise OAuthError(f"Token endpoint returned HTTP {status}") from e
    except httpx.HTTPError as e:
        logger.error(f"Request error contacting token endpoint: {e}")
        raise OAuthError(f"Network error during token acquisition: {e}") from e
    except ValueError as e:
        raise OAuthError("Token endpoint returned invalid JSON") from e


async def exchange_code(secret: ClientSecret, code: str, http: httpx.AsyncClient) -> TokenSet:
    """
    Exchange an authorization code for a token set.

    Raises:
        OAuthError: If the token endpoint rejects the code.
    """
    data = await _post_token_endpoint(
        secret,
        {
            "code": code,
            "client_id": secret.client_id,
            "client_secret": secret.client_secret,
            "redirect_uri": secret.redirect_uri,
            "grant_type": "authorization_code",
        },
        http,
    )
    tokens = TokenSet.from_response(data)
    if not tokens.refresh_token:
        raise OAuthError("Token endpoint did not return a refresh token")
    return tokens


async def refresh_tokens(secret: ClientSecret, tokens: TokenSet, http: httpx.AsyncClient) -> TokenSet:
    """
    Obtain a new access token with the refresh token.

    Raises:
        OAuthError: If there is no refresh token or the refresh fails.
    """
    if not tokens.refresh_token:
        raise OAuthError("No refresh token available; authorize again")

    data = await _post_token_endpoint(
        secret,
        {
            "client_id": secret.client_id,
            "client_secret": secret.client_secret,
            "refresh_token": tokens.refresh_token,
            "grant_type": "refresh_token",
        },
        http,
    )
    return TokenSet.from_response(data, previous=tokens)


async def authorize_interactive(
    secret: ClientSecret,
    http: httpx.AsyncClient,
    prompt: Callable[[str], str] = input,
) -> TokenSet:
    """
    Run the installed-app consent flow on the terminal.

    Prints the consent URL, then reads the authorization code (or the whole
    redirected URL, from which the code is extracted).
    """
    print("Go to the following link in your browser, then paste the authorization code:")
    print()
    print(f"  {authorization_url(secret)}")
    print()

    answer = (await asyncio.to_thread(prompt, "Authorization code: ")).strip()
    code = _extract_code(answer)
    if not code:
        raise OAuthError("No authorization code entered")

    tokens = await exchange_code(secret, code, http)
    logger.info("Successfully obtained Gmail tokens")
    return tokens


def _extract_code(answer: str) -> str:
    """Accept either a bare code or the full redirect URL containing ?code=..."""
    if "code=" not in answer:
        return answer
    url = httpx.URL(answer)
    return url.params.get("code", "")


class TokenProvider:
    """
    Supplies a valid access token to API clients.

    Usage:
        >>> provider = TokenProvider(secret, tokens, http=http, on_refresh=config.save_tokens)
        >>> token = await provider.get_access_token()

    Attributes:
        secret: The OAuth client.
        tokens: The current token set.
    """

    def __init__(
        self,
        secret: ClientSecret,
        tokens: TokenSet,
        *,
        http: httpx.AsyncClient,
        on_refresh: TokenCallback | None = None,
    ) -> None:
        self.secret = secret
        self.tokens = tokens
        self.on_refresh = on_refresh
        self._http = http
        self._lock = asyncio.Lock()

    async def get_access_token(self, rejected: str | None = None) -> str:
        """
        Return an access token, refreshing it first if it is about to expire.

        Args:
            rejected: A token the API answered 401 to. It is refreshed even
                      if it looks valid, unless another task has already
                      replaced it.

        Raises:
            OAuthError: If a needed refresh fails.
        """
        async with self._lock:
            revoked = rejected is not None and self.tokens.access_token == rejected
            if revoked or self.tokens.expires_soon():
                logger.debug("Refreshing Gmail access token")
                self.tokens = await refresh_tokens(self.secret, self.tokens, self._http)
                if self.on_refresh:
                    self.on_refresh(self.tokens)
            return self.tokens.access_token


# =============================================================================
# Exceptions
# =============================================================================

class OAuthError(Exception):
    """Raised when tokens cannot be obtained or refreshed."""
    pass
