"""
Account administration through Firebase Authentication.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from firebase_admin import App, auth
from firebase_admin import exceptions as firebase_exceptions

from relay.errors import IdentityError

ADMIN_CLAIM = "admin"


class IdentityProvider(Protocol):
    def disable_user(self, uid: str) -> None:
        ...

    def promote_to_admin(self, uid: str) -> None:
        ...

    def is_admin(self, uid: str) -> bool:
        ...


class FirebaseIdentityProvider:
    def __init__(self, app: Optional[App] = None):
        self.app = app

    def disable_user(self, uid: str) -> None:
        try:
            auth.update_user(uid, disabled=True, app=self.app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            raise IdentityError(str(e)) from e

    def promote_to_admin(self, uid: str) -> None:
        """Set the admin claim, keeping any other custom claims the user has."""
        try:
            user = auth.get_user(uid, app=self.app)
            claims = dict(user.custom_claims or {})
            claims[ADMIN_CLAIM] = True
            auth.set_custom_user_claims(uid, claims, app=self.app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            raise IdentityError(str(e)) from e

    def is_admin(self, uid: str) -> bool:
        try:
            user = auth.get_user(uid, app=self.app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            raise IdentityError(str(e)) from e
        return (user.custom_claims or {}).get(ADMIN_CLAIM) is True


@dataclass
class InMemoryUser:
    uid: str
    disabled: bool = False
    custom_claims: dict = field(default_factory=dict)


class InMemoryIdentityProvider:
    """Simple in-memory user directory for development and tests."""

    def __init__(self):
        self.users: dict[str, InMemoryUser] = {}

    def add_user(self, uid: str, **claims) -> InMemoryUser:
        user = InMemoryUser(uid=uid, custom_claims=dict(claims))
        self.users[uid] = user
        return user

    def reset(self) -> None:
        self.users.clear()

    def _get(self, uid: str) -> InMemoryUser:
        user = self.users.get(uid)
        if user is None:
            raise IdentityError(
                f"No user record found for the provided user ID: {uid}."
            )
        return user

    def disable_user(self, uid: str) -> None:
        self._get(uid).disabled = True

    def promote_to_admin(self, uid: str) -> None:
        self._get(uid).custom_claims[ADMIN_CLAIM] = True

    def is_admin(self, uid: str) -> bool:
        return self._get(uid).custom_claims.get(ADMIN_CLAIM) is True
