from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

from stocktracker.common.errors import AuthenticationRequired
from stocktracker.common.logging import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """
    Signed-in user.

    - uid: Firebase Auth uid (string); scopes every stored collection
    - claims: decoded token claims, when available
    """

    uid: str
    claims: Mapping[str, Any] = field(default_factory=dict)


IdentityCallback = Callable[[Optional[Identity]], Awaitable[None]]


class IdentityProvider(ABC):
    """Source of the current identity and of identity changes."""

    def __init__(self) -> None:
        self._current: Optional[Identity] = None
        self._callbacks: list[IdentityCallback] = []

    def current_identity(self) -> Optional[Identity]:
        return self._current

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return _remove

    async def _emit(self, identity: Optional[Identity]) -> None:
        self._current = identity
        for cb in list(self._callbacks):
            await cb(identity)

    async def sign_out(self) -> None:
        if self._current is None:
            return
        log_event(logger, "auth_sign_out", uid=self._current.uid)
        await self._emit(None)

    @abstractmethod
    def provider_name(self) -> str: ...


class LocalIdentityProvider(IdentityProvider):
    """Trusts the uid it is given. For tests, scripts and the local CLI."""

    def provider_name(self) -> str:
        return "local"

    async def sign_in(self, uid: str) -> Identity:
        uid = (uid or "").strip()
        if not uid:
            raise AuthenticationRequired("sign_in")
        identity = Identity(uid=uid)
        await self._emit(identity)
        return identity


class FirebaseIdentityProvider(IdentityProvider):
    """
    Establishes identity from a Firebase ID token.

    The token is verified with the Firebase Admin SDK; its value is never logged.
    """

    def __init__(self, *, verify_id_token: Callable[[str], Mapping[str, Any]] | None = None) -> None:
        super().__init__()
        self._verify = verify_id_token

    def provider_name(self) -> str:
        return "firebase"

    def _verifier(self) -> Callable[[str], Mapping[str, Any]]:
        if self._verify is None:
            from firebase_admin import auth as firebase_auth  # noqa: WPS433

            from stocktracker.persistence.firebase_client import init_firebase_admin  # noqa: WPS433

            init_firebase_admin()
            self._verify = firebase_auth.verify_id_token
        return self._verify

    async def sign_in_with_id_token(self, token: str) -> Identity:
        token = (token or "").strip()
        if not token:
            log_event(logger, "auth_failure", severity="WARNING", auth_provider="firebase", reason="empty_token")
            raise AuthenticationRequired("sign_in")

        try:
            decoded = self._verifier()(token)
        except Exception as e:
            log_event(
                logger,
                "auth_failure",
                severity="WARNING",
                auth_provider="firebase",
                reason="verify_id_token_failed",
                error=type(e).__name__,
            )
            raise AuthenticationRequired("sign_in") from e

        uid = str(decoded.get("uid") or decoded.get("sub") or "").strip()
        if not uid:
            log_event(logger, "auth_failure", severity="WARNING", auth_provider="firebase", reason="missing_uid")
            raise AuthenticationRequired("sign_in")

        identity = Identity(uid=uid, claims=dict(decoded))
        log_event(logger, "auth_success", auth_provider="firebase", uid=uid)
        await self._emit(identity)
        return identity
