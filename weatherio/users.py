"""
User registration and login backed by the `users` collection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import bcrypt

from weatherio.connection import ConnectionManager
from weatherio.db import Document, utc_timestamp
from weatherio.exceptions import DuplicateKeyError, InvalidPasswordError, UserExistsError

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


@dataclass
class UserRecord:
    email: str
    password_hash: str
    created_at: str
    id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Document) -> "UserRecord":
        return cls(
            email=doc["email"],
            password_hash=doc["password"],
            created_at=doc["created_at"],
            id=doc.get("id"),
        )


def _encode_password(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise InvalidPasswordError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
        )
    return encoded


class UserStore:
    def __init__(self, connection: ConnectionManager, *, rounds: int = 10):
        self._connection = connection
        self.rounds = rounds

    def get(self, email: str) -> Optional[UserRecord]:
        doc = self._connection.get().users.find_one({"email": email})
        return UserRecord.from_document(doc) if doc else None

    def register(self, email: str, password: str) -> UserRecord:
        """Create a user with a bcrypt-hashed password; raises UserExistsError if taken."""
        encoded = _encode_password(password)
        db = self._connection.get()
        if db.users.find_one({"email": email}) is not None:
            raise UserExistsError(email)
        hashed = bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds))
        try:
            doc = db.users.insert(
                {
                    "email": email,
                    "password": hashed.decode("utf-8"),
                    "created_at": utc_timestamp(),
                }
            )
        except DuplicateKeyError as exc:
            raise UserExistsError(email) from exc
        logger.info("Registered user %s", email)
        return UserRecord.from_document(doc)

    def authenticate(self, email: str, password: str) -> Optional[UserRecord]:
        """Return the user when the password matches, otherwise None."""
        user = self.get(email)
        if user is None:
            return None
        try:
            encoded = _encode_password(password)
        except InvalidPasswordError:
            return None
        if not bcrypt.checkpw(encoded, user.password_hash.encode("utf-8")):
            return None
        return user
