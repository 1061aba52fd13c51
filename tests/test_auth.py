import asyncio

import pytest

from mcp_server_forgejo.error_handling import (
    AuthInvalidError,
    AuthMissingError,
    AuthUnreachableError,
    to_error_payload,
)
from mcp_server_forgejo.forgejo.auth import AuthValidator, validate_token_format
from mcp_server_forgejo.redaction import mask_token, token_fingerprint

TOKEN_A = "0123456789abcdef0123456789abcdef01234567"
TOKEN_B = "fedcba9876543210fedcba9876543210fedcba98"


class FakeCheck:
    """Credential check that answers from a table, optionally slowly."""

    def __init__(self, valid=None, delay: float = 0.0, error: Exception = None):
        self.valid = valid or {}
        self.delay = delay
        self.error = error
        self.calls = []

    async def __call__(self, token: str) -> bool:
        self.calls.append(token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.valid.get(token, False)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "   "])
async def test_missing_credential_makes_no_call(token, clock):
    check = FakeCheck()
    validator = AuthValidator(check, clock=clock)

    with pytest.raises(AuthMissingError) as exc_info:
        await validator.validate(token)

    assert check.calls == []
    assert exc_info.value.kind == "AuthMissing"


@pytest.mark.asyncio
async def test_malformed_credential_is_invalid_without_a_call(clock):
    check = FakeCheck()
    validator = AuthValidator(check, clock=clock)
    token = "abc def;DROP"

    with pytest.raises(AuthInvalidError) as exc_info:
        await validator.validate(token)

    assert check.calls == []
    assert token not in exc_info.value.message


@pytest.mark.asyncio
async def test_valid_credential_is_cached_for_the_ttl(clock):
    check = FakeCheck(valid={TOKEN_A: True})
    validator = AuthValidator(check, ttl=300, clock=clock)

    decision = await validator.validate(TOKEN_A)
    clock.advance(200)
    await validator.validate(TOKEN_A)

    assert decision.valid is True
    assert decision.fingerprint == token_fingerprint(TOKEN_A)
    assert len(check.calls) == 1

    clock.advance(101)
    await validator.validate(TOKEN_A)
    assert len(check.calls) == 2


@pytest.mark.asyncio
async def test_concurrent_validations_share_one_check(clock):
    check = FakeCheck(valid={TOKEN_A: True}, delay=0.05)
    validator = AuthValidator(check, clock=clock)

    decisions = await asyncio.gather(*(validator.validate(TOKEN_A) for _ in range(15)))

    assert len(check.calls) == 1
    assert all(d.valid for d in decisions)


@pytest.mark.asyncio
async def test_distinct_tokens_never_share_an_entry(clock):
    check = FakeCheck(valid={TOKEN_A: True, TOKEN_B: False})
    validator = AuthValidator(check, clock=clock)

    assert (await validator.validate(TOKEN_A)).valid
    with pytest.raises(AuthInvalidError):
        await validator.validate(TOKEN_B)

    assert sorted(check.calls) == sorted([TOKEN_A, TOKEN_B])
    assert len(validator.cache) == 2


@pytest.mark.asyncio
async def test_rejected_credential_is_cached_as_invalid(clock):
    check = FakeCheck(valid={})
    validator = AuthValidator(check, clock=clock)

    for _ in range(3):
        with pytest.raises(AuthInvalidError, match="rejected"):
            await validator.validate(TOKEN_A)

    assert len(check.calls) == 1


@pytest.mark.asyncio
async def test_timeout_is_unreachable_and_not_cached(clock):
    check = FakeCheck(valid={TOKEN_A: True}, delay=1.0)
    validator = AuthValidator(check, timeout=0.05, clock=clock)

    with pytest.raises(AuthUnreachableError, match="timed out"):
        await validator.validate(TOKEN_A)

    check.delay = 0
    decision = await validator.validate(TOKEN_A)
    assert decision.valid
    assert len(check.calls) == 2


@pytest.mark.asyncio
async def test_network_failure_is_unreachable(clock):
    check = FakeCheck(error=ConnectionRefusedError("refused"))
    validator = AuthValidator(check, clock=clock)

    with pytest.raises(AuthUnreachableError) as exc_info:
        await validator.validate(TOKEN_A)

    assert exc_info.value.kind == "AuthUnreachable"
    assert "AuthInvalid" not in exc_info.value.message


@pytest.mark.asyncio
async def test_invalidate_drops_only_that_credential(clock):
    check = FakeCheck(valid={TOKEN_A: True, TOKEN_B: True})
    validator = AuthValidator(check, clock=clock)
    await validator.validate(TOKEN_A)
    await validator.validate(TOKEN_B)

    assert validator.invalidate(TOKEN_A) is True
    await validator.validate(TOKEN_A)
    await validator.validate(TOKEN_B)

    assert check.calls.count(TOKEN_A) == 2
    assert check.calls.count(TOKEN_B) == 1


@pytest.mark.asyncio
async def test_raw_token_never_appears_in_errors_or_logs(clock, caplog):
    check = FakeCheck(valid={})
    validator = AuthValidator(check, clock=clock)
    caplog.set_level("DEBUG")

    with pytest.raises(AuthInvalidError) as exc_info:
        await validator.validate(TOKEN_A)

    payload = to_error_payload(exc_info.value)
    rendered = [str(payload), exc_info.value.message] + [r.getMessage() for r in caplog.records]
    assert all(TOKEN_A not in text for text in rendered)
    assert mask_token(TOKEN_A) in exc_info.value.message
    assert all(TOKEN_A not in str(key) for key in validator.cache._entries)


def test_validate_token_format_strips_whitespace():
    assert validate_token_format(f"  {TOKEN_A}\n") == TOKEN_A
    with pytest.raises(AuthMissingError):
        validate_token_format(None)
