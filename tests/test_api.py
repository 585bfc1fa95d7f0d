from unittest.mock import AsyncMock

import httpx
import pytest

from api.main import app
from conftest import choice_id
from db.session import Database
from services.reward_service import RewardDispatcher

ADMIN_SESSION = {
    "success": True,
    "user": {"email": "admin@example.com", "name": "Admin"},
    "account": {"id": "acc-admin"},
}
PLAYER_SESSION = {
    "success": True,
    "user": {"email": "ada@example.com", "name": "Ada"},
    "account": {"id": "acc-ada"},
}


@pytest.fixture
def redis():
    client = AsyncMock()
    client.get.return_value = None
    return client


@pytest.fixture
async def client(engine, ledger, redis):
    # ASGITransport does not run the lifespan; wire state by hand
    database = Database(engine=engine)
    app.state.db = database
    app.state.redis = redis
    app.state.ledger = ledger
    app.state.dispatcher = RewardDispatcher(database.sessionmaker, ledger)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http
    await app.state.dispatcher.drain()


def auth(token="tok"):
    return {"Authorization": f"Bearer {token}"}


async def test_public_quiz_hides_correct_answers(client, capitals_quiz):
    response = await client.get("/api/q/world-capitals")
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "World Capitals"
    assert [q["text"] for q in body["questions"]][0] == "Capital of France?"
    assert all("is_correct" not in c for q in body["questions"] for c in q["choices"])


async def test_unknown_quiz_is_404(client):
    response = await client.get("/api/q/missing")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Quiz not found"}


async def test_public_listing(client, capitals_quiz):
    response = await client.get("/api/quizzes")
    assert response.status_code == 200
    assert [q["slug"] for q in response.json()] == ["world-capitals"]
    assert response.json()[0]["questions_count"] == 3


async def test_play_flow(client, capitals_quiz, redis):
    start = await client.post("/api/q/world-capitals/attempts", json={"player_name": "Ada", "device_id": "dev-1"})
    assert start.status_code == 200
    attempt_id = start.json()["attempt_id"]
    redis.incr.assert_awaited_once()
    redis.expire.assert_awaited_once()

    answers = [{"question_id": capitals_quiz.questions[0].id, "choice_id": choice_id(capitals_quiz, 0, "Paris")}]
    submit = await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/submit", json={"answers": answers})
    assert submit.status_code == 200
    assert submit.json()["score"] == 1
    assert submit.json()["max_score"] == 3
    assert submit.json()["percentage"] == 33.3

    again = await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/submit", json={"answers": []})
    assert again.status_code == 409

    saved = await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/score", json={"player_name": "Ada"})
    assert saved.status_code == 200
    assert "score_entry_id" in saved.json()

    result = await client.get(f"/api/q/world-capitals/attempts/{attempt_id}")
    assert result.status_code == 200
    assert result.json()["questions"][0]["is_correct"] is True

    board = await client.get("/api/q/world-capitals/leaderboard")
    assert [e["name"] for e in board.json()["entries"]] == ["Ada"]


async def test_start_is_rate_limited(client, capitals_quiz, redis):
    redis.get.return_value = "20"
    response = await client.post("/api/q/world-capitals/attempts", json={"player_name": "Ada", "device_id": "dev-1"})
    assert response.status_code == 429
    redis.incr.assert_not_awaited()


async def test_logged_in_player_is_rewarded(client, capitals_quiz, ledger):
    ledger.me.return_value = PLAYER_SESSION
    start = await client.post("/api/q/world-capitals/attempts", headers=auth(),
                              json={"player_name": "Ada", "device_id": "dev-1"})
    attempt_id = start.json()["attempt_id"]

    await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/submit", json={"answers": []})
    await app.state.dispatcher.drain()

    ledger.record_activity.assert_awaited_once()
    assert ledger.record_activity.await_args.kwargs["account_id"] == "acc-ada"


async def test_session_without_account_resolves_by_email(client, capitals_quiz, ledger):
    ledger.me.return_value = {
        "success": True,
        "user": {"id": "auth-user-1", "email": "ada@example.com", "name": "Ada"},
    }
    ledger.find_account.return_value = {"id": "acc-real", "name": "Ada"}
    start = await client.post("/api/q/world-capitals/attempts", headers=auth(),
                              json={"player_name": "Ada", "device_id": "dev-1"})
    attempt_id = start.json()["attempt_id"]

    await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/submit", json={"answers": []})
    await app.state.dispatcher.drain()

    ledger.find_account.assert_awaited_once_with("ada@example.com")
    assert ledger.record_activity.await_args.kwargs["account_id"] == "acc-real"


async def test_duplicate_answers_are_rejected(client, capitals_quiz):
    start = await client.post("/api/q/world-capitals/attempts", json={"player_name": "Ada", "device_id": "dev-1"})
    attempt_id = start.json()["attempt_id"]
    question_id = capitals_quiz.questions[0].id
    answers = [
        {"question_id": question_id, "choice_id": choice_id(capitals_quiz, 0, "London")},
        {"question_id": question_id, "choice_id": choice_id(capitals_quiz, 0, "Paris")},
    ]

    response = await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/submit", json={"answers": answers})
    assert response.status_code == 422

    retry = await client.post(f"/api/q/world-capitals/attempts/{attempt_id}/submit", json={"answers": answers[1:]})
    assert retry.status_code == 200
    assert retry.json()["score"] == 1


async def test_admin_requires_allow_listed_email(client, ledger):
    assert (await client.get("/api/admin/quizzes")).status_code == 401

    ledger.me.return_value = PLAYER_SESSION
    assert (await client.get("/api/admin/quizzes", headers=auth())).status_code == 403


async def test_admin_authoring_flow(client, ledger):
    ledger.me.return_value = ADMIN_SESSION
    headers = auth()

    quiz_id = (await client.post("/api/admin/quizzes", headers=headers, json={"title": "Capitals & Countries!"})).json()["quiz_id"]

    rejected = await client.post(f"/api/admin/quizzes/{quiz_id}/publish", headers=headers)
    assert rejected.status_code == 422
    assert rejected.json()["errors"][0]["field"] == "questions"

    question_id = (await client.post(f"/api/admin/quizzes/{quiz_id}/questions", headers=headers,
                                     json={"text": "Capital of France?"})).json()["question_id"]
    paris = (await client.post(f"/api/admin/questions/{question_id}/choices", headers=headers,
                               json={"text": "Paris"})).json()["choice_id"]
    await client.post(f"/api/admin/questions/{question_id}/choices", headers=headers, json={"text": "London"})
    await client.patch(f"/api/admin/choices/{paris}", headers=headers, json={"is_correct": True})

    published = await client.post(f"/api/admin/quizzes/{quiz_id}/publish", headers=headers)
    assert published.status_code == 200
    assert published.json()["slug"] == "capitals-countries"

    detail = (await client.get(f"/api/admin/quizzes/{quiz_id}", headers=headers)).json()
    assert detail["status"] == "PUBLISHED"
    assert detail["questions"][0]["choices"][0]["is_correct"] is True

    await client.put(f"/api/admin/quizzes/{quiz_id}/active", headers=headers, json={"is_active": True})
    assert [q["id"] for q in (await client.get("/api/quizzes")).json()] == [quiz_id]

    analytics = await client.get(f"/api/admin/quizzes/{quiz_id}/analytics", headers=headers)
    assert analytics.status_code == 200
    assert analytics.json()["analytics"]["total_attempts"] == 0

    deleted = await client.delete(f"/api/admin/quizzes/{quiz_id}", headers=headers)
    assert deleted.status_code == 200
    assert (await client.get("/api/q/capitals-countries")).status_code == 404


async def test_login_is_proxied(client, ledger):
    ledger.login.return_value = {"success": True, "access_token": "a", "refresh_token": "r"}
    response = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "secret"})
    assert response.status_code == 200
    assert response.json()["access_token"] == "a"

    ledger.login.return_value = {"success": False, "error": "Invalid credentials"}
    response = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "bad"})
    assert response.status_code == 401


async def test_balance(client, ledger):
    from services.ledger_client import Balance

    ledger.me.return_value = PLAYER_SESSION
    ledger.get_balance.return_value = Balance(coins=100, tokens=5, xp=50, level=1)
    response = await client.get("/api/me/balance", headers=auth())
    assert response.json() == {"success": True, "coins": 100, "tokens": 5, "xp": 50, "level": 1}
