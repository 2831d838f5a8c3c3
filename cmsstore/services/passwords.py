from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError


HASH_PREFIX = "$argon2"


class PasswordService:
    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self.ph = hasher or PasswordHasher()

    def is_hashed(self, value: str) -> bool:
        return value.startswith(HASH_PREFIX)

    def hash_password(self, password: str) -> str:
        # Already-hashed values pass through so repeated saves never double-hash.
        if self.is_hashed(password):
            return password
        return str(self.ph.hash(password))

    def verify_password(self, password: str, hash_str: str | None) -> bool:
        if not hash_str:
            return False
        try:
            self.ph.verify(hash_str, password)
            return True
        except (VerifyMismatchError, InvalidHashError):
            return False
