"""Round-robin key rotation for virtual tokens."""

import asyncio
from typing import Dict, List

from genai_proxy.config import Config
from genai_proxy.models import mask_secret


class KeyRotationTable:
    """Tracks the next pool index to hand out for each virtual token.

    State is volatile and local to the process. Entries are created lazily on
    the first draw for a token and are never removed.
    """

    def __init__(self) -> None:
        self._indices: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def take_next(self, token: str, pool_size: int) -> int:
        """Return the index to use for this call and advance the rotation.

        The read and the store happen under the token's lock, so concurrent
        callers observe a total order of draws.

        Raises:
            ValueError: If ``pool_size`` is smaller than one.
        """
        if pool_size < 1:
            raise ValueError(f"Pool size must be positive, got {pool_size}")

        lock = self._locks.setdefault(token, asyncio.Lock())
        async with lock:
            index = self._indices.get(token, 0) % pool_size
            self._indices[token] = (index + 1) % pool_size
            return index

    def peek(self, token: str) -> int:
        return self._indices.get(token, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._indices)

    def get_status(self, config: Config) -> Dict[str, object]:
        tokens: List[Dict[str, object]] = []
        for token, pool in config.keys.items():
            tokens.append(
                {
                    "token": mask_secret(token),
                    "pool_size": len(pool),
                    "next_index": self.peek(token),
                    "seen": token in self._indices,
                }
            )
        return {"total_tokens": len(tokens), "tokens": tokens}
