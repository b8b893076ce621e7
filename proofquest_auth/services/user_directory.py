"""
User Directory
Resolves, creates and touches the persisted account for a verified address
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from proofquest_auth.models.user import User


class UserDirectory(Protocol):
    """Collaborator contract the auth core depends on."""

    def get_by_address(self, address: str) -> Optional[User]: ...

    def upsert(self, address: str) -> User: ...

    def touch_last_login(self, address: str) -> None: ...


class SqlAlchemyUserDirectory:
    """UserDirectory backed by the users table."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_address(self, address: str) -> Optional[User]:
        """
        Look up a user by normalized address.

        Args:
            address: Lowercase 0x-prefixed address

        Returns:
            User if found, None otherwise
        """
        return self.db.scalar(select(User).where(User.address == address))

    def upsert(self, address: str) -> User:
        """
        Return the user for an address, creating it if needed.

        The login timestamp is set either way, since upsert is only called
        from a successful sign-in.
        """
        now = datetime.now(timezone.utc)
        user = self.get_by_address(address)
        if user is None:
            user = User(address=address, created_at=now, updated_at=now)
            self.db.add(user)
        user.last_login_at = now

        self.db.commit()
        self.db.refresh(user)
        return user

    def touch_last_login(self, address: str) -> None:
        user = self.get_by_address(address)
        if user is None:
            return
        user.last_login_at = datetime.now(timezone.utc)
        self.db.commit()
