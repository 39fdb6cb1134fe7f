# src/sqlpractice_bff/auth_utils.py

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from jose import JWTError, jwt
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import settings

# Set in httpx.Request.extensions once a request has been through a refresh cycle
RETRY_MARKER = "sqlpractice_bff.retried"


class SessionExpiredError(Exception):
    def __init__(self, reason: str, login_path: Optional[str] = None):
        self.reason = reason
        self.login_path = login_path
        super().__init__(f"Session expired: {reason}")


class NotAuthenticatedError(Exception):
    def __init__(self, detail: str = "No token"):
        self.detail = detail
        super().__init__(detail)


class InvalidTokenError(Exception):
    def __init__(self, reason: str = "Invalid token"):
        self.reason = reason
        super().__init__(reason)


# --- Token helpers ---

class RefreshTokenResponse(BaseModel):
    """
    Body of the refresh-token exchange.
    The upstream is inconsistent about field names, so every spelling it has been seen to use is accepted.
    """
    model_config = ConfigDict(extra="ignore")

    access_token: Optional[str] = Field(
        None, validation_alias=AliasChoices("accessToken", "access_token", "access")
    )
    refresh_token: Optional[str] = Field(
        None, validation_alias=AliasChoices("refreshToken", "refresh_token", "refresh")
    )


def decode_token_claims(token: Optional[str]) -> Dict[str, Any]:
    """
    Returns the JWT payload without verifying the signature.
    The grader verifies tokens; the client only needs the claims to find the user id and expiry.
    """
    if not token:
        raise InvalidTokenError("Empty token")
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        raise InvalidTokenError(f"Could not decode token: {e}") from e
    if not isinstance(claims, dict):
        raise InvalidTokenError("Token payload is not an object")
    return claims


def user_id_from_claims(claims: Dict[str, Any]) -> Optional[Any]:
    for key in ("userId", "id", "sub"):
        if claims.get(key):
            return claims[key]
    return None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split("Bearer ", 1)[1]


def is_retried(request: httpx.Request) -> bool:
    return bool(request.extensions.get(RETRY_MARKER))


# --- Single-flight token refresh ---

class TokenRefreshCoordinator:
    """
    Turns any number of concurrent 401s into one refresh-token exchange.

    The first caller starts the exchange as a task; every caller, the first included,
    awaits that same task, so waiters resume in the order they arrived. A successful
    exchange persists the new pair and notifies `on_token_refreshed`. A failed one
    clears the stored pair, calls `on_session_expired` with the login path and makes
    every waiter raise SessionExpiredError instead of retrying.
    """

    def __init__(
            self,
            storage,
            refresh_exchange: Callable[[str], Awaitable[Any]],
            on_token_refreshed: Optional[Callable[[str], None]] = None,
            on_session_expired: Optional[Callable[[str], None]] = None,
            login_path: Optional[str] = None,
    ):
        self.storage = storage
        self.refresh_exchange = refresh_exchange
        self.on_token_refreshed = on_token_refreshed
        self.on_session_expired = on_session_expired
        self.login_path = login_path or settings.LOGIN_PATH
        self._inflight: Optional[asyncio.Future] = None

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def recover(self, request: httpx.Request) -> str:
        """
        Called for a request that got a 401. Marks it as retried and returns the access token
        it should be replayed with.
        """
        if is_retried(request):
            raise RuntimeError("Request has already been through a token refresh.")
        request.extensions[RETRY_MARKER] = True

        # A refresh finished between sending this request and its 401 coming back
        current = self.storage.access_token
        if not self.is_refreshing and current and current != bearer_token(request.headers.get("Authorization")):
            return current
        return await self.wait_for_token()

    async def wait_for_token(self) -> str:
        if self._inflight is None:
            refresh_token = self.storage.refresh_token
            if not refresh_token:
                self._expire_session("no refresh token stored")
                raise SessionExpiredError("No refresh token available.", self.login_path)
            print("AUTH_UTILS: Access token rejected. Starting refresh-token exchange.")
            self._inflight = asyncio.ensure_future(self._exchange(refresh_token))
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future) -> None:
        if self._inflight is future:
            self._inflight = None
        # Marks a failure as retrieved even when every waiter has gone away
        if not future.cancelled():
            future.exception()

    async def _exchange(self, refresh_token: str) -> str:
        try:
            payload = await self.refresh_exchange(refresh_token)
            tokens = RefreshTokenResponse.model_validate(payload or {})
        except (httpx.HTTPError, ValueError) as e:
            print(f"AUTH_UTILS: Refresh-token exchange failed: {e}")
            self._expire_session(str(e))
            raise SessionExpiredError(f"Refresh failed: {e}", self.login_path) from e

        if not tokens.access_token:
            self._expire_session("refresh response carried no access token")
            raise SessionExpiredError("Refresh response carried no access token.", self.login_path)

        self.storage.save(tokens.access_token, tokens.refresh_token)
        print(
            f"AUTH_UTILS: Refresh-token exchange succeeded. Refresh token rotated: {'Yes' if tokens.refresh_token else 'No'}")
        if self.on_token_refreshed:
            try:
                self.on_token_refreshed(tokens.access_token)
            except Exception as e:
                print(f"AUTH_UTILS: on_token_refreshed listener failed: {e}")
        return tokens.access_token

    def _expire_session(self, reason: str) -> None:
        self.storage.clear()
        print(f"AUTH_UTILS: Session expired ({reason}). Redirecting to {self.login_path}.")
        if self.on_session_expired:
            try:
                self.on_session_expired(self.login_path)
            except Exception as e:
                print(f"AUTH_UTILS: on_session_expired listener failed: {e}")

    def discard(self) -> None:
        """Drops an in-flight exchange; its waiters see CancelledError."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
