from conftest import build_quiz, choice_id
from core.result import NOT_FOUND, VALIDATION, CONFLICT
from models.score import ScoreEntry
from services.attempt_service import AttemptService
from services.score_service import ScoreService
from utils.hashing import hash_email
from utils.scoring import SubmittedAnswer


async def play(db, quiz, name="Ada", device="device-1", correct=3):
    """Start and submit an attempt answering the first `correct` questions right."""
    service = AttemptService(db)
    attempt_id = (await service.start_attempt(quiz.slug, name, device))["attempt_id"]
    right = ["Paris", "London", "Berlin"]
    answers = [SubmittedAnswer(quiz.questions[i].id, choice_id(quiz, i, right[i])) for i in range(correct)]
    await service.submit_attempt(attempt_id, quiz.slug, answers)
    return attempt_id


async def test_save_score_hashes_email(db, capitals_quiz):
    attempt_id = await play(db, capitals_quiz)

    result = await ScoreService(db).save_score(attempt_id, "Ada L.", email="  Ada@Example.com ")

    assert result.success
    entry = await db.get(ScoreEntry, result["score_entry_id"])
    assert entry.player_name == "Ada L."
    assert entry.email == "ada@example.com"
    assert entry.email_hash == hash_email("ada@example.com")
    assert (entry.score, entry.max_score) == (3, 3)
    assert entry.device_hash is not None


async def test_save_score_once_per_attempt(db, capitals_quiz):
    attempt_id = await play(db, capitals_quiz)
    service = ScoreService(db)
    assert (await service.save_score(attempt_id, "Ada")).success
    second = await service.save_score(attempt_id, "Ada")
    assert second.code == CONFLICT
    assert second.error == "Score already saved"


async def test_save_score_requires_finished_attempt(db, capitals_quiz):
    attempt_id = (await AttemptService(db).start_attempt(capitals_quiz.slug, "Ada", "device-1"))["attempt_id"]
    assert (await ScoreService(db).save_score(attempt_id, "Ada")).code == VALIDATION
    assert (await ScoreService(db).save_score("a-missing", "Ada")).code == NOT_FOUND


async def test_save_score_checks_quiz_slug(db, capitals_quiz):
    attempt_id = await play(db, capitals_quiz)
    result = await ScoreService(db).save_score(attempt_id, "Ada", quiz_slug="other")
    assert result.code == NOT_FOUND


async def test_save_score_without_email(db, capitals_quiz):
    attempt_id = await play(db, capitals_quiz)
    result = await ScoreService(db).save_score(attempt_id, "Ada", email="   ")
    entry = await db.get(ScoreEntry, result["score_entry_id"])
    assert entry.email is None
    assert entry.email_hash is None


async def test_attempt_result_shows_selected_and_correct(db, capitals_quiz):
    attempt_id = await play(db, capitals_quiz, correct=1)

    result = await ScoreService(db).get_attempt_result(capitals_quiz.slug, attempt_id)

    assert result.success
    first, second, third = result["questions"]
    assert first["is_correct"] is True
    assert first["selected_choice_id"] == first["correct_choice_id"]
    assert second["selected_choice_id"] is None
    assert second["correct_choice_id"] == choice_id(capitals_quiz, 1, "London")
    assert second["is_correct"] is False
    assert [c["text"] for c in third["choices"]] == ["Vienna", "Prague", "Berlin"]
    assert result["attempt"].score == 1


async def test_attempt_result_wrong_slug(db, capitals_quiz):
    attempt_id = await play(db, capitals_quiz)
    result = await ScoreService(db).get_attempt_result("someone-elses-quiz", attempt_id)
    assert result.code == NOT_FOUND


async def test_leaderboard_orders_by_score_then_time(db, capitals_quiz):
    service = ScoreService(db)
    for name, correct in (("Low", 1), ("High", 3), ("Also high", 3)):
        attempt_id = await play(db, capitals_quiz, name=name, correct=correct)
        await service.save_score(attempt_id, name)

    # Played but not saved
    await play(db, capitals_quiz, name="Shy", correct=3)

    result = await service.get_leaderboard(capitals_quiz.slug)

    assert [(e["rank"], e["name"], e["score"]) for e in result["entries"]] == [
        (1, "High", 3),
        (2, "Also high", 3),
        (3, "Low", 1),
    ]
    assert len((await service.get_leaderboard(capitals_quiz.slug, limit=1))["entries"]) == 1


async def test_leaderboard_is_per_quiz(db, capitals_quiz):
    other = build_quiz(title="Other", slug="other")
    db.add(other)
    await db.commit()
    attempt_id = await play(db, capitals_quiz)
    await ScoreService(db).save_score(attempt_id, "Ada")

    assert (await ScoreService(db).get_leaderboard("other"))["entries"] == []
    assert (await ScoreService(db).get_leaderboard("missing")).code == NOT_FOUND
