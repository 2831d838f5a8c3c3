from __future__ import annotations

import re
import secrets
from uuid import uuid4


_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class IdGenerator:
    # Injectable so tests can pin ids; the default yields 128-bit random hex.

    def generate_id(self) -> str:
        return uuid4().hex

    def generate_token(self) -> str:
        return secrets.token_urlsafe(32)

    def validate_id(self, value: object) -> bool:
        return isinstance(value, str) and bool(_ID_PATTERN.match(value))


def generate_id() -> str:
    return uuid4().hex
