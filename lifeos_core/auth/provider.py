# =============================================================================
# lifeos_core/auth/provider.py
# Authentication provider boundary
# =============================================================================
"""
The sync engine only needs three things from authentication: whether a user
is signed in, who that user is, and a way to tear the session down when the
backend rejects the token. Login screens and sign-up live elsewhere.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """The signed-in owner of every record written to the remote store."""
    id: str
    email: Optional[str] = None


class AuthProvider(ABC):
    """Interface the sync engine expects from an authentication backend."""

    @abstractmethod
    def is_authenticated(self) -> bool:
        ...

    @abstractmethod
    def get_current_user(self) -> Optional[CurrentUser]:
        ...

    @abstractmethod
    def clear_session(self) -> None:
        """Forget stored credentials; the user must sign in again."""
        ...


class SupabaseAuthProvider(AuthProvider):
    """
    AuthProvider backed by Supabase Auth (gotrue) on an existing client.

    Usage:
        client = get_supabase_client(settings)
        auth = SupabaseAuthProvider(client)
        auth.sign_in("me@example.com", "secret")
    """

    def __init__(self, client):
        self._client = client
        self._user: Optional[CurrentUser] = None

    def sign_in(self, email: str, password: str) -> CurrentUser:
        """
        Sign in with email and password.

        Raises whatever gotrue raises on bad credentials; callers decide how
        to present that.
        """
        response = self._client.auth.sign_in_with_password(
            {"email": email, "password": password}
        )
        self._user = CurrentUser(id=response.user.id, email=response.user.email)
        logger.info(f"Signed in as {self._user.email}")
        return self._user

    def is_authenticated(self) -> bool:
        return self._client.auth.get_session() is not None

    def get_current_user(self) -> Optional[CurrentUser]:
        if self._user is not None:
            return self._user

        session = self._client.auth.get_session()
        if session is None or session.user is None:
            return None

        self._user = CurrentUser(id=session.user.id, email=session.user.email)
        return self._user

    def clear_session(self) -> None:
        self._user = None
        try:
            self._client.auth.sign_out()
        except Exception as e:
            # gotrue suppresses API errors here but not transport errors; the
            # cached user is gone either way, so the engine stays signed out.
            logger.warning(f"Sign-out request failed: {e}")
        logger.info("Session cleared")
