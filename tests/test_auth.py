import pytest

from genai_proxy.auth import parse_authorization, require_token, resolve_credential
from genai_proxy.config import Config
from genai_proxy.errors import MalformedAuthorization, MissingAuthorization, UnknownToken
from genai_proxy.key_manager import KeyRotationTable
from genai_proxy.models import TOKEN_DIRECT, TOKEN_VIRTUAL, AuthKind


@pytest.mark.parametrize("value", [None, ""])
def test_parse_missing(value):
    assert parse_authorization(value).kind is AuthKind.MISSING


@pytest.mark.parametrize("value", ["Bearer ", "Basic abc", "bearer abc", "Bearerabc", "abc"])
def test_parse_malformed(value):
    outcome = parse_authorization(value)

    assert outcome.kind is AuthKind.MALFORMED
    assert outcome.token is None


def test_parse_valid():
    outcome = parse_authorization("Bearer genai-abc")

    assert outcome.kind is AuthKind.VALID
    assert outcome.token == "genai-abc"
    assert outcome.is_virtual is True


def test_parse_single_character_token():
    outcome = parse_authorization("Bearer x")

    assert outcome.kind is AuthKind.VALID
    assert outcome.token == "x"


def test_require_token_raises_client_errors():
    with pytest.raises(MissingAuthorization) as missing:
        require_token(parse_authorization(None))
    with pytest.raises(MalformedAuthorization) as malformed:
        require_token(parse_authorization("Token abc"))

    assert missing.value.status_code == 400
    assert malformed.value.status_code == 400
    assert require_token(parse_authorization("Bearer sk-xyz")) == "sk-xyz"


@pytest.mark.asyncio
async def test_virtual_token_rotates_keys():
    config = Config(keys={"genai-abc": ["k1", "k2"]})
    rotation = KeyRotationTable()

    first = await resolve_credential("genai-abc", config, rotation)
    second = await resolve_credential("genai-abc", config, rotation)
    third = await resolve_credential("genai-abc", config, rotation)

    assert first.token_kind == TOKEN_VIRTUAL
    assert (first.key, first.key_index) == ("k1", 0)
    assert (second.key, second.key_index) == ("k2", 1)
    assert third.key == "k1"


@pytest.mark.asyncio
async def test_unknown_virtual_token_forbidden():
    rotation = KeyRotationTable()

    with pytest.raises(UnknownToken) as exc_info:
        await resolve_credential("genai-nope", Config(keys={"genai-abc": ["k1"]}), rotation)

    assert exc_info.value.status_code == 403
    assert exc_info.value.to_response().body == (
        b'{"error":{"message":"Invalid Token","code":403}}'
    )
    assert rotation.snapshot() == {}


@pytest.mark.asyncio
async def test_direct_token_passes_through():
    rotation = KeyRotationTable()

    credential = await resolve_credential("sk-xyz", Config(), rotation)

    assert credential.token_kind == TOKEN_DIRECT
    assert credential.authorization == "Bearer sk-xyz"
    assert rotation.snapshot() == {}


@pytest.mark.asyncio
async def test_direct_token_matching_pool_name_without_prefix():
    config = Config(keys={"team": ["k1"]})

    credential = await resolve_credential("team", config, KeyRotationTable())

    assert credential.key == "team"
