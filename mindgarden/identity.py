"""
Identity provider seam.

The core never talks to an auth service directly; it asks an injected
provider who the current user is. All persistence is scoped to that id.
"""

from __future__ import annotations

import abc

from mindgarden.errors import Unauthenticated


class IdentityProvider(abc.ABC):
    """Answers "who is calling" with a stable user id, or None if signed out."""

    @abc.abstractmethod
    def current_user(self) -> str | None:
        ...

    def require_user(self) -> str:
        """Return the current user id or raise Unauthenticated."""
        uid = self.current_user()
        if not uid:
            raise Unauthenticated()
        return uid


class StaticIdentity(IdentityProvider):
    """Fixed identity. Used per-request by the HTTP layer, and by the CLI."""

    def __init__(self, user_id: str | None):
        self.user_id = user_id or None

    def current_user(self) -> str | None:
        return self.user_id

    def __repr__(self) -> str:
        return f"<StaticIdentity user_id={self.user_id!r}>"
