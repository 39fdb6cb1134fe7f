# src/sqlpractice_bff/session_data.py

import time
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from .auth_utils import InvalidTokenError, decode_token_claims, user_id_from_claims


class TokenPair(BaseModel):
    """
    The credentials persisted for a session.
    Written by login and refresh, removed by logout or a failed refresh.
    """
    access_token: str
    refresh_token: Optional[str] = None


class SessionState:
    """
    Holds the decoded user of the current session.
    Reads the access token from the token storage and re-synchronises
    whenever the refresh coordinator hands it a new one.
    """

    def __init__(
            self,
            storage,
            on_logout: Optional[Callable[[], None]] = None,
            clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.on_logout = on_logout
        self.clock = clock
        self.token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None
        self.loading = True

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> Optional[Any]:
        if not self.user:
            return None
        return user_id_from_claims(self.user)

    def _is_expired(self, claims: Dict[str, Any]) -> bool:
        exp = claims.get("exp")
        if exp is None:
            return False
        try:
            return float(exp) < self.clock()
        except (TypeError, ValueError):
            return True

    def load(self) -> Optional[Dict[str, Any]]:
        token = self.storage.access_token
        try:
            if not token:
                self.storage.remove_access_token()
                return None
            try:
                claims = decode_token_claims(token)
            except InvalidTokenError as e:
                print(f"SESSION: Stored token is invalid ({e.reason}). Logging out.")
                self.logout()
                return None
            if self._is_expired(claims):
                print("SESSION: Stored token has expired. Logging out.")
                self.logout()
                return None
            self.token = token
            self.user = claims
            return claims
        finally:
            self.loading = False

    def login(self, new_token: str) -> bool:
        new_token = (new_token or "").strip()
        try:
            claims = decode_token_claims(new_token)
        except InvalidTokenError:
            print("SESSION: Invalid token format.")
            return False
        self.token = new_token
        self.user = claims
        self.storage.save(new_token)
        print(f"SESSION: Logged in as user {user_id_from_claims(claims)}.")
        return True

    def logout(self) -> None:
        self.token = None
        self.user = None
        self.storage.clear()
        print("SESSION: Logged out.")
        if self.on_logout:
            self.on_logout()

    def sync_token(self, token: str) -> None:
        """Refresh broadcast target. No network call, the coordinator already persisted the token."""
        try:
            claims = decode_token_claims(token)
        except InvalidTokenError as e:
            print(f"SESSION: Refreshed token could not be decoded ({e.reason}). Logging out.")
            self.logout()
            return
        self.token = token
        self.user = claims
