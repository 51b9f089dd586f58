"""Authorization header parsing and upstream credential resolution."""

import logging
from typing import Optional, Protocol

from genai_proxy.config import Config
from genai_proxy.errors import MalformedAuthorization, MissingAuthorization, UnknownToken
from genai_proxy.models import (
    TOKEN_DIRECT,
    TOKEN_VIRTUAL,
    VIRTUAL_TOKEN_PREFIX,
    AuthKind,
    AuthOutcome,
    UpstreamCredential,
    mask_secret,
)

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class RotationTable(Protocol):
    async def take_next(self, token: str, pool_size: int) -> int: ...


def parse_authorization(value: Optional[str]) -> AuthOutcome:
    if not value:
        return AuthOutcome(AuthKind.MISSING)
    if not value.startswith(BEARER_PREFIX) or len(value) <= len(BEARER_PREFIX):
        return AuthOutcome(AuthKind.MALFORMED)
    return AuthOutcome(AuthKind.VALID, value[len(BEARER_PREFIX) :])


def require_token(outcome: AuthOutcome) -> str:
    """Return the parsed token or raise the matching client error."""
    if outcome.kind is AuthKind.MISSING:
        logger.error("Rejected request: authorization header is missing")
        raise MissingAuthorization()
    if outcome.kind is AuthKind.MALFORMED or outcome.token is None:
        logger.error("Rejected request: malformed authorization header")
        raise MalformedAuthorization()
    return outcome.token


async def resolve_credential(
    token: str, config: Config, rotation: RotationTable
) -> UpstreamCredential:
    """Map a client token to the credential sent upstream.

    Virtual tokens draw the next key from their pool; direct tokens are used
    verbatim.

    Raises:
        UnknownToken: If a virtual token has no configured pool.
    """
    if not token.startswith(VIRTUAL_TOKEN_PREFIX):
        logger.debug("Forwarding direct token %s", mask_secret(token))
        return UpstreamCredential(token_kind=TOKEN_DIRECT, key=token)

    pool = config.keys.get(token)
    if pool is None:
        logger.error("Rejected unknown virtual token %s", mask_secret(token))
        raise UnknownToken()

    index = await rotation.take_next(token, len(pool))
    logger.info(
        "Virtual token %s using key %s (index %d of %d)",
        mask_secret(token),
        mask_secret(pool[index]),
        index,
        len(pool),
    )
    return UpstreamCredential(token_kind=TOKEN_VIRTUAL, key=pool[index], key_index=index)
