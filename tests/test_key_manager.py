import asyncio
from collections import Counter
from typing import Dict, List, cast

import pytest

from genai_proxy.config import Config
from genai_proxy.key_manager import KeyRotationTable


@pytest.mark.asyncio
async def test_first_draw_starts_at_zero():
    rotation = KeyRotationTable()

    assert rotation.peek("genai-a") == 0
    assert await rotation.take_next("genai-a", 3) == 0
    assert rotation.peek("genai-a") == 1


@pytest.mark.asyncio
async def test_sequential_draws_cycle_in_pool_order():
    rotation = KeyRotationTable()

    issued = [await rotation.take_next("genai-a", 3) for _ in range(7)]

    assert issued == [0, 1, 2, 0, 1, 2, 0]


@pytest.mark.asyncio
async def test_tokens_rotate_independently():
    rotation = KeyRotationTable()

    assert await rotation.take_next("genai-a", 2) == 0
    assert await rotation.take_next("genai-b", 2) == 0
    assert await rotation.take_next("genai-a", 2) == 1
    assert rotation.snapshot() == {"genai-a": 0, "genai-b": 1}


@pytest.mark.asyncio
@pytest.mark.parametrize("draws,pool_size", [(10, 3), (12, 4), (5, 7), (1, 1)])
async def test_rotation_fairness(draws: int, pool_size: int):
    rotation = KeyRotationTable()

    counts = Counter([await rotation.take_next("genai-a", pool_size) for _ in range(draws)])

    for index in range(pool_size):
        assert counts[index] in (draws // pool_size, -(-draws // pool_size))


@pytest.mark.asyncio
async def test_concurrent_draws_never_duplicate():
    rotation = KeyRotationTable()
    pool_size = 5
    rounds = 40

    issued = await asyncio.gather(
        *[rotation.take_next("genai-a", pool_size) for _ in range(pool_size * rounds)]
    )

    assert Counter(issued) == {index: rounds for index in range(pool_size)}
    assert rotation.peek("genai-a") == 0


@pytest.mark.asyncio
async def test_concurrent_draws_are_cyclic():
    rotation = KeyRotationTable()

    issued = await asyncio.gather(*[rotation.take_next("genai-a", 3) for _ in range(9)])

    assert list(issued) == [0, 1, 2, 0, 1, 2, 0, 1, 2]


@pytest.mark.asyncio
async def test_index_stays_in_range_if_pool_shrinks():
    rotation = KeyRotationTable()
    for _ in range(4):
        await rotation.take_next("genai-a", 5)

    assert await rotation.take_next("genai-a", 2) == 0
    assert rotation.peek("genai-a") == 1


@pytest.mark.asyncio
async def test_invalid_pool_size_rejected():
    rotation = KeyRotationTable()

    with pytest.raises(ValueError):
        await rotation.take_next("genai-a", 0)
    assert rotation.snapshot() == {}


@pytest.mark.asyncio
async def test_get_status_format():
    config = Config(keys={"genai-team-alpha": ["k1", "k2"], "genai-b": ["k3"]})
    rotation = KeyRotationTable()
    await rotation.take_next("genai-team-alpha", 2)

    status = rotation.get_status(config)
    tokens = cast(List[Dict[str, object]], status["tokens"])

    assert status["total_tokens"] == 2
    assert tokens[0] == {
        "token": "genai-te...pha",
        "pool_size": 2,
        "next_index": 1,
        "seen": True,
    }
    assert tokens[1]["next_index"] == 0
    assert tokens[1]["seen"] is False
