"""User store interface used by identity reconciliation."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from src.types.saml import User


class UserRepository(ABC):
    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[User]:
        """Return the user with this (lower-cased) email, auth identities included."""

    @abstractmethod
    async def save(self, user: User) -> User:
        """Insert or update a user together with its auth identities."""


class InMemoryUserRepository(UserRepository):
    def __init__(self, users: Optional[List[User]] = None) -> None:
        self._users: Dict[str, User] = {}
        for user in users or []:
            self._users[user.id] = user.model_copy(deep=True)

    async def find_by_email(self, email: str) -> Optional[User]:
        for user in self._users.values():
            if user.email == email:
                return user.model_copy(deep=True)
        return None

    async def save(self, user: User) -> User:
        self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    @property
    def users(self) -> List[User]:
        return [user.model_copy(deep=True) for user in self._users.values()]
