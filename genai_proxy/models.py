"""Data models for credential resolution."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

VIRTUAL_TOKEN_PREFIX = "genai-"

TOKEN_VIRTUAL = "virtual"
TOKEN_DIRECT = "direct"


class AuthKind(str, Enum):
    MISSING = "missing"
    MALFORMED = "malformed"
    VALID = "valid"


@dataclass(frozen=True)
class AuthOutcome:
    """Result of parsing the inbound Authorization header."""

    kind: AuthKind
    token: Optional[str] = None

    @property
    def is_virtual(self) -> bool:
        return self.token is not None and self.token.startswith(VIRTUAL_TOKEN_PREFIX)

    @property
    def token_kind(self) -> Optional[str]:
        if self.token is None:
            return None
        return TOKEN_VIRTUAL if self.is_virtual else TOKEN_DIRECT


@dataclass(frozen=True)
class UpstreamCredential:
    """The credential sent upstream for a single request."""

    token_kind: str
    key: str
    key_index: Optional[int] = None

    @property
    def authorization(self) -> str:
        return f"Bearer {self.key}"


def mask_secret(value: str) -> str:
    if len(value) <= 11:
        return f"{value[:3]}..."
    return f"{value[:8]}...{value[-3:]}"
