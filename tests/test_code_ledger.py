import asyncio
from datetime import timedelta

import pytest

from app.errors import SessionNotActive
from app.repositories.memory import MemoryCodeRepository
from app.schemas.attendance import VerificationCode
from app.services.code_ledger import ConsumeResult, generate_code

from conftest import START


def test_generated_codes_are_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()


async def test_issue_is_idempotent_while_live(guard, clock):
    first = await guard.ledger.issue("s1", "student-1")
    clock.advance(seconds=30)
    second = await guard.ledger.issue("s1", "student-1")

    assert second.code == first.code
    assert second.expires_at == first.expires_at
    assert (first.expires_at - first.issued_at).total_seconds() == 90


async def test_issue_rejects_sessions_that_are_not_live(guard):
    for session_id in ("done", "cancelled", "missing"):
        with pytest.raises(SessionNotActive):
            await guard.ledger.issue(session_id, "student-1")


async def test_code_accepted_just_before_expiry(guard, clock):
    issued = await guard.ledger.issue("s1", "student-1")
    clock.advance(seconds=89)
    assert await guard.ledger.consume("s1", "student-1", issued.code) == ConsumeResult.ok


async def test_code_rejected_just_after_expiry(guard, clock):
    issued = await guard.ledger.issue("s1", "student-1")
    clock.advance(seconds=91)
    assert await guard.ledger.consume("s1", "student-1", issued.code) == ConsumeResult.expired


async def test_new_code_after_expiry(guard, clock):
    first = await guard.ledger.issue("s1", "student-1")
    clock.advance(seconds=91)
    second = await guard.ledger.issue("s1", "student-1")
    assert second.expires_at > first.expires_at
    assert await guard.ledger.consume("s1", "student-1", second.code) == ConsumeResult.ok


async def test_wrong_code_is_invalid(guard):
    issued = await guard.ledger.issue("s1", "student-1")
    wrong = str(int(issued.code) + 1) if issued.code != "999999" else "100000"
    assert await guard.ledger.consume("s1", "student-1", wrong) == ConsumeResult.invalid


async def test_comparison_is_exact(guard):
    issued = await guard.ledger.issue("s1", "student-1")
    assert await guard.ledger.consume("s1", "student-1", f" {issued.code}") == ConsumeResult.invalid


async def test_code_of_another_student_is_invalid(guard):
    issued = await guard.ledger.issue("s1", "student-1")
    assert await guard.ledger.consume("s1", "student-2", issued.code) == ConsumeResult.invalid


async def test_second_consume_reports_already_used(guard):
    issued = await guard.ledger.issue("s1", "student-1")
    assert await guard.ledger.consume("s1", "student-1", issued.code) == ConsumeResult.ok
    for _ in range(3):
        assert await guard.ledger.consume("s1", "student-1", issued.code) == ConsumeResult.already_used


async def test_exactly_one_concurrent_consumer_wins(guard):
    issued = await guard.ledger.issue("s1", "student-1")
    results = await asyncio.gather(*[
        guard.ledger.consume("s1", "student-1", issued.code) for _ in range(25)
    ])
    assert results.count(ConsumeResult.ok) == 1
    assert results.count(ConsumeResult.already_used) == 24


async def test_concurrent_issue_yields_one_code(guard):
    codes = await asyncio.gather(*[guard.ledger.issue("s1", "student-1") for _ in range(10)])
    assert len({c.code for c in codes}) == 1


async def test_released_claim_can_be_consumed_again(guard, clock):
    issued = await guard.ledger.issue("s1", "student-1")
    assert await guard.ledger.consume("s1", "student-1", issued.code) == ConsumeResult.ok
    assert await guard.ledger.release("s1", "student-1", issued.code, clock.now())
    assert await guard.ledger.consume("s1", "student-1", issued.code) == ConsumeResult.ok


async def test_consumed_code_is_not_reissued(guard):
    issued = await guard.ledger.issue("s1", "student-1")
    await guard.ledger.consume("s1", "student-1", issued.code)
    fresh = await guard.ledger.issue("s1", "student-1")
    assert fresh is not issued
    assert not fresh.consumed


async def test_release_only_reverts_the_matching_claim():
    codes = MemoryCodeRepository()
    earlier = VerificationCode(
        session_id="s1", student_id="student-1", code="111111",
        issued_at=START, expires_at=START + timedelta(seconds=90),
    )
    later = VerificationCode(
        session_id="s1", student_id="student-1", code="111111",
        issued_at=START + timedelta(seconds=10), expires_at=START + timedelta(seconds=100),
    )
    await codes.insert_live(earlier, START)
    assert await codes.claim("s1", "student-1", "111111", START + timedelta(seconds=1))
    await codes.insert_live(later, START + timedelta(seconds=10))
    later_claim = START + timedelta(seconds=11)
    assert await codes.claim("s1", "student-1", "111111", later_claim)

    assert not await codes.release("s1", "student-1", "111111", START + timedelta(seconds=5))
    assert await codes.release("s1", "student-1", "111111", later_claim)
    assert earlier.consumed
    assert not later.consumed
