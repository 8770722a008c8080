"""Shared authentication state for the Bluesky client."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class AuthSession:
    """Login credentials plus the session established with them.

    One instance is shared by everything talking to the same account.
    `authenticated` only ever goes from False to True; a failed login
    leaves the session untouched so the next caller can retry.
    """

    identifier: Optional[str] = None
    app_password: Optional[str] = field(default=None, repr=False)
    authenticated: bool = False
    access_jwt: Optional[str] = field(default=None, repr=False)
    refresh_jwt: Optional[str] = field(default=None, repr=False)
    did: Optional[str] = None
    handle: Optional[str] = None

    def __post_init__(self) -> None:
        if self.identifier:
            self.identifier = self.identifier.strip().lstrip("@")

    @property
    def has_credentials(self) -> bool:
        return bool(self.identifier and self.app_password)

    def establish(self, data: dict) -> None:
        """Store a createSession response."""
        self.access_jwt = data.get("accessJwt")
        self.refresh_jwt = data.get("refreshJwt")
        self.did = data.get("did") or self.did
        self.handle = data.get("handle") or self.handle
        self.authenticated = True

    def auth_headers(self) -> dict[str, str]:
        if self.authenticated and self.access_jwt:
            return {"Authorization": f"Bearer {self.access_jwt}"}
        return {}
