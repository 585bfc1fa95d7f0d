from datetime import datetime, timedelta

import httpx
from sqlalchemy import select, update

from core.config import settings
from models.attempt import Attempt
from models.reward import RewardEvent, REWARD_PENDING, REWARD_DELIVERED, REWARD_FAILED
from services.ledger_client import CentralAccountClient, LedgerError
from services.reward_service import (
    build_reward, backoff_seconds, RewardService, RewardDispatcher, EVENT_PERFECT_SCORE, EVENT_QUIZ_COMPLETED,
)
from utils.scoring import ScoreResult


def test_perfect_score_reward():
    grant = build_reward("c1", ScoreResult(score=3, max_score=3, correct_count=3), now=datetime(2026, 1, 1))
    assert grant.event_type == EVENT_PERFECT_SCORE
    assert (grant.coins, grant.tokens, grant.xp) == (100, 5, 50)
    assert grant.metadata == {
        "quizId": "c1",
        "score": 3,
        "maxScore": 3,
        "correctAnswers": 3,
        "percentage": "100.0",
        "isPerfect": True,
        "timestamp": "2026-01-01T00:00:00Z",
    }


def test_partial_score_reward():
    grant = build_reward("c1", ScoreResult(score=2, max_score=3, correct_count=2))
    assert grant.event_type == EVENT_QUIZ_COMPLETED
    assert grant.tokens == 2
    assert grant.metadata["percentage"] == "66.7"
    assert grant.metadata["isPerfect"] is False


def test_zero_score_still_earns_coins_and_xp():
    grant = build_reward("c1", ScoreResult(score=0, max_score=3, correct_count=0))
    assert (grant.coins, grant.tokens, grant.xp) == (100, 0, 50)


def test_backoff_doubles_and_caps():
    base = settings.REWARD_BACKOFF_BASE_SECONDS
    assert backoff_seconds(1) == base
    assert backoff_seconds(2) == base * 2
    assert backoff_seconds(3) == base * 4
    assert backoff_seconds(30) == settings.REWARD_BACKOFF_MAX_SECONDS


async def make_event(db, quiz, account_id="acc-1", due=True):
    attempt = Attempt(
        quiz_post_id=quiz.id, account_id=account_id, device_hash="d" * 64, player_name="Ada",
        score=3, max_score=3, started_at=datetime.utcnow(), finished_at=datetime.utcnow(),
    )
    db.add(attempt)
    await db.flush()
    event = RewardService(db).enqueue(attempt, ScoreResult(score=3, max_score=3, correct_count=3))
    if due:
        event.next_attempt_at = datetime.utcnow() - timedelta(seconds=1)
    await db.commit()
    return event


async def reload(db, event_id):
    return await db.get(RewardEvent, event_id, populate_existing=True)


async def test_enqueue_is_pending_and_not_immediately_due(db, capitals_quiz):
    event = await make_event(db, capitals_quiz, due=False)
    assert event.status == REWARD_PENDING
    assert event.attempts == 0
    assert event.next_attempt_at > datetime.utcnow()
    assert event.tokens == 5


async def test_has_completed_before(db, capitals_quiz):
    service = RewardService(db)
    first = await make_event(db, capitals_quiz)
    assert not await service.has_completed_before("acc-1", capitals_quiz.id, first.attempt_id)
    assert await service.has_completed_before("acc-1", capitals_quiz.id, "other-attempt")
    assert not await service.has_completed_before("acc-2", capitals_quiz.id, "other-attempt")
    assert not await service.has_completed_before(None, capitals_quiz.id, "other-attempt")


async def test_deliver_success(db, capitals_quiz, dispatcher, ledger):
    event = await make_event(db, capitals_quiz)

    assert await dispatcher.deliver(event.id) is True

    ledger.record_activity.assert_awaited_once_with(
        account_id="acc-1", event_type=EVENT_PERFECT_SCORE, coins=100, tokens=5, xp=50, metadata=event.payload,
    )
    event = await reload(db, event.id)
    assert event.status == REWARD_DELIVERED
    assert event.attempts == 1
    assert event.delivered_at is not None
    assert event.next_attempt_at is None


async def test_delivered_event_is_not_sent_again(db, capitals_quiz, dispatcher, ledger):
    event = await make_event(db, capitals_quiz)
    await dispatcher.deliver(event.id)
    assert await dispatcher.deliver(event.id) is False
    assert await dispatcher.deliver_pending() == 0
    assert ledger.record_activity.await_count == 1


async def test_failure_reschedules_with_backoff(db, capitals_quiz, dispatcher, ledger):
    ledger.record_activity.side_effect = LedgerError("boom")
    event = await make_event(db, capitals_quiz)

    before = datetime.utcnow()
    assert await dispatcher.deliver(event.id) is False

    event = await reload(db, event.id)
    assert event.status == REWARD_PENDING
    assert event.attempts == 1
    assert event.last_error == "boom"
    assert event.next_attempt_at >= before + timedelta(seconds=backoff_seconds(1))


async def test_failure_is_abandoned_after_max_attempts(db, capitals_quiz, dispatcher, ledger):
    ledger.record_activity.side_effect = LedgerError("down")
    event = await make_event(db, capitals_quiz)
    event.attempts = settings.REWARD_MAX_ATTEMPTS - 1
    await db.commit()

    await dispatcher.deliver(event.id)

    event = await reload(db, event.id)
    assert event.status == REWARD_FAILED
    assert event.attempts == settings.REWARD_MAX_ATTEMPTS
    assert event.next_attempt_at is None


async def test_deliver_pending_picks_only_due_events(db, capitals_quiz, dispatcher, ledger):
    due = await make_event(db, capitals_quiz, account_id="acc-1")
    later = await make_event(db, capitals_quiz, account_id="acc-2", due=False)

    assert await dispatcher.deliver_pending() == 1

    assert (await reload(db, due.id)).status == REWARD_DELIVERED
    assert (await reload(db, later.id)).status == REWARD_PENDING
    result = await db.execute(select(RewardEvent).filter(RewardEvent.status == REWARD_PENDING))
    assert [e.id for e in result.scalars().all()] == [later.id]


async def test_scheduled_delivery_runs_in_background(db, capitals_quiz, dispatcher, ledger):
    event = await make_event(db, capitals_quiz)
    dispatcher.schedule(event.id)
    await dispatcher.drain()
    assert (await reload(db, event.id)).status == REWARD_DELIVERED


async def test_unexpected_error_counts_as_failed_attempt(db, capitals_quiz, dispatcher, ledger):
    ledger.record_activity.side_effect = RuntimeError("bad payload")
    event = await make_event(db, capitals_quiz)

    assert await dispatcher.deliver(event.id) is False

    event = await reload(db, event.id)
    assert event.status == REWARD_PENDING
    assert event.attempts == 1
    assert event.last_error == "bad payload"
    assert event.next_attempt_at > datetime.utcnow()


async def test_deliver_pending_rechecks_each_event(db, capitals_quiz, dispatcher, ledger):
    first = await make_event(db, capitals_quiz, account_id="acc-1")
    first.next_attempt_at = datetime.utcnow() - timedelta(minutes=5)
    await db.commit()
    second = await make_event(db, capitals_quiz, account_id="acc-2")
    first_id, second_id = first.id, second.id

    async def other_worker_delivers_second(**kwargs):
        # A concurrent retry run finishes the second event while we send the first
        if kwargs["account_id"] == "acc-1":
            await db.execute(update(RewardEvent).where(RewardEvent.id == second_id).values(status=REWARD_DELIVERED))
            await db.commit()

    ledger.record_activity.side_effect = other_worker_delivers_second

    assert await dispatcher.deliver_pending() == 1

    assert ledger.record_activity.await_count == 1
    assert ledger.record_activity.await_args.kwargs["account_id"] == "acc-1"
    assert (await reload(db, first_id)).status == REWARD_DELIVERED
    assert (await reload(db, second_id)).attempts == 0


async def test_no_content_reply_counts_as_delivered(db, capitals_quiz, session_factory):
    client = CentralAccountClient(
        base_url="http://central.test", transport=httpx.MockTransport(lambda r: httpx.Response(204)),
    )
    dispatcher = RewardDispatcher(session_factory, client)
    event = await make_event(db, capitals_quiz)

    assert await dispatcher.deliver(event.id) is True
    await client.aclose()

    event = await reload(db, event.id)
    assert event.status == REWARD_DELIVERED
    assert event.attempts == 1
