from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from api.auth import get_ledger, get_dispatcher, get_optional_account, get_current_account, require_admin
from api.schemas import (
    ActionResponse, ErrorResponse, QuizPublic, QuizSummary, QuizAdminDetail, QuizCreate, QuizMetaUpdate,
    ActiveUpdate, QuestionCreate, QuestionUpdate, QuestionReorder, ChoiceCreate, ChoiceUpdate,
    StartAttemptRequest, SubmitAttemptRequest, SubmitAttemptResponse, SaveScoreRequest,
    AttemptResultResponse, AttemptOut, LeaderboardResponse, AnalyticsResponse, QuizAnalyticsOut,
    ScoreEntryOut, LoginRequest, RegisterRequest, RefreshRequest, BalanceResponse,
)
from core.config import settings
from core.logger import logger, setup_logging
from core.result import ActionResult, NOT_FOUND, VALIDATION, CONFLICT, EXTERNAL, RATE_LIMITED
from db.session import Database, get_db, get_redis
from models.quiz import QuizPost
from services.analytics_service import AnalyticsService
from services.attempt_service import AttemptService, PlayerAccount
from services.ledger_client import CentralAccountClient, LedgerError
from services.quiz_service import QuizService
from services.reward_service import RewardDispatcher
from services.score_service import ScoreService
from services.user_service import UserService
from utils.hashing import hash_device_id
from utils.scoring import SubmittedAnswer


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.db = Database()
    app.state.redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    app.state.ledger = CentralAccountClient()
    app.state.dispatcher = RewardDispatcher(app.state.db.sessionmaker, app.state.ledger)
    logger.info("API started", env=settings.ENV)
    try:
        yield
    finally:
        await app.state.dispatcher.drain()
        await app.state.ledger.aclose()
        await app.state.redis.aclose()
        await app.state.db.dispose()


# API Documentation
API_DESCRIPTION = """
## QuizPost API

Quizzes are authored by administrators, published under a slug and played
anonymously or with a central account. Completing a quiz for the first time
with an account earns coins, XP and tokens.

### Authentication

`Authorization: Bearer <access_token>` issued by `/api/auth/login`.
Players may stay anonymous; admin endpoints require an allow-listed email.
"""

TAGS_METADATA = [
    {"name": "play", "description": "Public quiz play: start, submit, results, leaderboard."},
    {"name": "admin", "description": "Quiz authoring, publishing and analytics."},
    {"name": "auth", "description": "Session endpoints proxied to the central account service."},
]

app = FastAPI(
    title="QuizPost API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_CODE = {
    NOT_FOUND: 404,
    VALIDATION: 422,
    CONFLICT: 409,
    EXTERNAL: 502,
    RATE_LIMITED: 429,
}

ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Conflict"},
    422: {"model": ErrorResponse, "description": "Validation failed"},
    502: {"model": ErrorResponse, "description": "Store or central service failure"},
}


def error_response(result: ActionResult) -> JSONResponse:
    return JSONResponse(status_code=STATUS_BY_CODE.get(result.code, 400), content=jsonable_encoder(result.to_dict()))


def action_response(result: ActionResult):
    if not result.success:
        return error_response(result)
    return JSONResponse(content=jsonable_encoder(result.to_dict()))


def quiz_summary(quiz: QuizPost) -> QuizSummary:
    return QuizSummary(
        id=quiz.id,
        title=quiz.title,
        description=quiz.description,
        slug=quiz.slug,
        status=quiz.status,
        is_active=quiz.is_active,
        icon=quiz.icon,
        gradient=quiz.gradient,
        questions_count=len(quiz.questions),
        created_at=quiz.created_at,
        published_at=quiz.published_at,
    )


# === Play ===

@app.get("/api/quizzes", response_model=List[QuizSummary], tags=["play"], summary="List public quizzes")
async def list_public_quizzes(db: AsyncSession = Depends(get_db)):
    """Published quizzes that are switched on for the homepage."""
    quizzes = await QuizService(db).list_public_quizzes()
    return [quiz_summary(q) for q in quizzes]


@app.get("/api/q/{slug}", response_model=QuizPublic, tags=["play"], summary="Get a quiz to play",
         responses={404: ERROR_RESPONSES[404]})
async def get_public_quiz(slug: str, db: AsyncSession = Depends(get_db)):
    quiz = await QuizService(db).get_published_quiz(slug)
    if not quiz:
        return error_response(ActionResult.fail("Quiz not found", code=NOT_FOUND))
    return QuizPublic.model_validate(quiz)


@app.post("/api/q/{slug}/attempts", response_model=ActionResponse, tags=["play"], summary="Start an attempt",
          responses={404: ERROR_RESPONSES[404], 429: {"model": ErrorResponse}})
async def start_attempt(
    slug: str,
    body: StartAttemptRequest,
    account: Optional[PlayerAccount] = Depends(get_optional_account),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    ledger: CentralAccountClient = Depends(get_ledger),
):
    # Rate Limiting per device
    rate_key = f"rl:start:{hash_device_id(body.device_id)}"
    current_count = await redis.get(rate_key)
    if current_count and int(current_count) >= settings.START_RATE_LIMIT_PER_MINUTE:
        return error_response(ActionResult.fail("Too many attempts. Please wait a minute.", code=RATE_LIMITED))

    service = AttemptService(db, user_service=UserService(db, ledger))
    result = await service.start_attempt(slug, body.player_name, body.device_id, account)

    if result.success:
        await redis.incr(rate_key)
        if not current_count:
            await redis.expire(rate_key, 60)
    return action_response(result)


@app.post("/api/q/{slug}/attempts/{attempt_id}/submit", response_model=SubmitAttemptResponse, tags=["play"],
          summary="Submit answers", responses={k: ERROR_RESPONSES[k] for k in (404, 409, 502)})
async def submit_attempt(
    slug: str,
    attempt_id: str,
    body: SubmitAttemptRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: RewardDispatcher = Depends(get_dispatcher),
):
    """Scores the attempt against the stored quiz. Reward delivery never affects the response."""
    answers = [SubmittedAnswer(question_id=a.question_id, choice_id=a.choice_id) for a in body.answers]
    result = await AttemptService(db, dispatcher=dispatcher).submit_attempt(attempt_id, slug, answers)
    return action_response(result)


@app.get("/api/q/{slug}/attempts/{attempt_id}", response_model=AttemptResultResponse, tags=["play"],
         summary="Attempt results", responses={404: ERROR_RESPONSES[404]})
async def get_attempt_result(slug: str, attempt_id: str, db: AsyncSession = Depends(get_db)):
    result = await ScoreService(db).get_attempt_result(slug, attempt_id)
    if not result.success:
        return error_response(result)
    return AttemptResultResponse(
        quiz_title=result["quiz"].title,
        attempt=AttemptOut.model_validate(result["attempt"]),
        questions=result["questions"],
    )


@app.post("/api/q/{slug}/attempts/{attempt_id}/score", response_model=ActionResponse, tags=["play"],
          summary="Save score to the leaderboard", responses={k: ERROR_RESPONSES[k] for k in (404, 409, 422)})
async def save_score(
    slug: str,
    attempt_id: str,
    body: SaveScoreRequest,
    account: Optional[PlayerAccount] = Depends(get_optional_account),
    db: AsyncSession = Depends(get_db),
):
    email = body.email or (account.email if account else None)
    result = await ScoreService(db).save_score(
        attempt_id,
        body.player_name,
        email=email,
        account_id=account.account_id if account else None,
        quiz_slug=slug,
    )
    return action_response(result)


@app.get("/api/q/{slug}/leaderboard", response_model=LeaderboardResponse, tags=["play"],
         summary="Saved scores, best first", responses={404: ERROR_RESPONSES[404]})
async def get_leaderboard(slug: str, limit: int = settings.LEADERBOARD_LIMIT, db: AsyncSession = Depends(get_db)):
    result = await ScoreService(db).get_leaderboard(slug, limit=min(max(limit, 1), 200))
    if not result.success:
        return error_response(result)
    return LeaderboardResponse(entries=result["entries"])


# === Auth ===

async def _proxy_auth(call) -> JSONResponse:
    try:
        body = await call
    except LedgerError as e:
        return error_response(ActionResult.fail(str(e), code=EXTERNAL))
    status_code = 200 if body.get("success") else 401
    return JSONResponse(status_code=status_code, content=body)


@app.post("/api/auth/login", tags=["auth"], summary="Log in via the central account service")
async def login(body: LoginRequest, ledger: CentralAccountClient = Depends(get_ledger)):
    return await _proxy_auth(ledger.login(body.email, body.password))


@app.post("/api/auth/register", tags=["auth"], summary="Register via the central account service")
async def register(body: RegisterRequest, ledger: CentralAccountClient = Depends(get_ledger),
                   db: AsyncSession = Depends(get_db)):
    response = await _proxy_auth(ledger.register(body.email, body.password, body.name))
    if response.status_code == 200:
        account_id = await UserService(db, ledger).get_or_create_account_id(body.email, body.name)
        logger.info("Player registered", account_id=account_id)
    return response


@app.post("/api/users/signup", response_model=ActionResponse, tags=["auth"],
          summary="Create (or reuse) a central account", responses={502: ERROR_RESPONSES[502]})
async def signup(body: RegisterRequest, ledger: CentralAccountClient = Depends(get_ledger),
                 db: AsyncSession = Depends(get_db)):
    result = await UserService(db, ledger).signup(body.email, body.name, body.password)
    return action_response(result)


@app.post("/api/auth/refresh", tags=["auth"], summary="Refresh a session")
async def refresh(body: RefreshRequest, ledger: CentralAccountClient = Depends(get_ledger)):
    return await _proxy_auth(ledger.refresh(body.refresh_token))


@app.get("/api/auth/me", response_model=ActionResponse, tags=["auth"], summary="Current account")
async def me(account: PlayerAccount = Depends(get_current_account)):
    return ActionResponse(email=account.email, name=account.name, account_id=account.account_id)


@app.get("/api/me/balance", response_model=BalanceResponse, tags=["auth"], summary="Coins, tokens, XP and level",
         responses={404: ERROR_RESPONSES[404], 502: ERROR_RESPONSES[502]})
async def my_balance(
    account: PlayerAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    ledger: CentralAccountClient = Depends(get_ledger),
):
    result = await UserService(db, ledger).get_balance(account.email)
    return action_response(result)


# === Admin ===

@app.get("/api/admin/quizzes", response_model=List[QuizSummary], tags=["admin"], summary="List all quizzes")
async def admin_list_quizzes(admin: PlayerAccount = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    quizzes = await QuizService(db).list_quizzes()
    return [quiz_summary(q) for q in quizzes]


@app.post("/api/admin/quizzes", response_model=ActionResponse, tags=["admin"], summary="Create a draft quiz")
async def admin_create_quiz(body: QuizCreate, admin: PlayerAccount = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    result = await QuizService(db).create_quiz(body.title, author_id=admin.account_id, author_email=admin.email)
    return action_response(result)


@app.get("/api/admin/quizzes/{quiz_id}", response_model=QuizAdminDetail, tags=["admin"], summary="Quiz for editing",
         responses={404: ERROR_RESPONSES[404]})
async def admin_get_quiz(quiz_id: str, admin: PlayerAccount = Depends(require_admin),
                         db: AsyncSession = Depends(get_db)):
    quiz = await QuizService(db).get_quiz(quiz_id)
    if not quiz:
        return error_response(ActionResult.fail("Quiz not found", code=NOT_FOUND))
    return QuizAdminDetail.model_validate(quiz)


@app.patch("/api/admin/quizzes/{quiz_id}", response_model=ActionResponse, tags=["admin"], summary="Update quiz details",
           responses={k: ERROR_RESPONSES[k] for k in (404, 422)})
async def admin_update_quiz(quiz_id: str, body: QuizMetaUpdate, admin: PlayerAccount = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    result = await QuizService(db).update_quiz_meta(quiz_id, **body.model_dump(exclude_unset=True))
    return action_response(result)


@app.delete("/api/admin/quizzes/{quiz_id}", response_model=ActionResponse, tags=["admin"], summary="Delete a quiz",
            responses={404: ERROR_RESPONSES[404]})
async def admin_delete_quiz(quiz_id: str, admin: PlayerAccount = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).delete_quiz(quiz_id))


@app.post("/api/admin/quizzes/{quiz_id}/publish", response_model=ActionResponse, tags=["admin"],
          summary="Validate and publish", responses={k: ERROR_RESPONSES[k] for k in (404, 422)})
async def admin_publish_quiz(quiz_id: str, admin: PlayerAccount = Depends(require_admin),
                             db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).publish_quiz(quiz_id))


@app.post("/api/admin/quizzes/{quiz_id}/unpublish", response_model=ActionResponse, tags=["admin"],
          summary="Back to draft", responses={404: ERROR_RESPONSES[404]})
async def admin_unpublish_quiz(quiz_id: str, admin: PlayerAccount = Depends(require_admin),
                               db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).unpublish_quiz(quiz_id))


@app.put("/api/admin/quizzes/{quiz_id}/active", response_model=ActionResponse, tags=["admin"],
         summary="Toggle homepage visibility", responses={404: ERROR_RESPONSES[404]})
async def admin_set_active(quiz_id: str, body: ActiveUpdate, admin: PlayerAccount = Depends(require_admin),
                           db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).set_active(quiz_id, body.is_active))


@app.post("/api/admin/quizzes/{quiz_id}/questions", response_model=ActionResponse, tags=["admin"],
          summary="Add a question", responses={404: ERROR_RESPONSES[404]})
async def admin_add_question(quiz_id: str, body: QuestionCreate, admin: PlayerAccount = Depends(require_admin),
                             db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).add_question(quiz_id, body.text))


@app.put("/api/admin/quizzes/{quiz_id}/questions/order", response_model=ActionResponse, tags=["admin"],
         summary="Reorder questions", responses={404: ERROR_RESPONSES[404]})
async def admin_reorder_questions(quiz_id: str, body: QuestionReorder, admin: PlayerAccount = Depends(require_admin),
                                  db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).reorder_questions(quiz_id, body.question_ids))


@app.patch("/api/admin/questions/{question_id}", response_model=ActionResponse, tags=["admin"],
           summary="Update a question", responses={k: ERROR_RESPONSES[k] for k in (404, 422)})
async def admin_update_question(question_id: str, body: QuestionUpdate, admin: PlayerAccount = Depends(require_admin),
                                db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).update_question(question_id, body.text, body.points))


@app.delete("/api/admin/questions/{question_id}", response_model=ActionResponse, tags=["admin"],
            summary="Delete a question", responses={404: ERROR_RESPONSES[404]})
async def admin_delete_question(question_id: str, admin: PlayerAccount = Depends(require_admin),
                                db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).delete_question(question_id))


@app.post("/api/admin/questions/{question_id}/choices", response_model=ActionResponse, tags=["admin"],
          summary="Add a choice", responses={k: ERROR_RESPONSES[k] for k in (404, 422)})
async def admin_add_choice(question_id: str, body: ChoiceCreate, admin: PlayerAccount = Depends(require_admin),
                           db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).add_choice(question_id, body.text))


@app.patch("/api/admin/choices/{choice_id}", response_model=ActionResponse, tags=["admin"],
           summary="Update a choice", responses={404: ERROR_RESPONSES[404]})
async def admin_update_choice(choice_id: str, body: ChoiceUpdate, admin: PlayerAccount = Depends(require_admin),
                              db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).update_choice(choice_id, body.text, body.is_correct))


@app.delete("/api/admin/choices/{choice_id}", response_model=ActionResponse, tags=["admin"],
            summary="Delete a choice", responses={404: ERROR_RESPONSES[404]})
async def admin_delete_choice(choice_id: str, admin: PlayerAccount = Depends(require_admin),
                              db: AsyncSession = Depends(get_db)):
    return action_response(await QuizService(db).delete_choice(choice_id))


@app.get("/api/admin/quizzes/{quiz_id}/analytics", response_model=AnalyticsResponse, tags=["admin"],
         summary="Scores and device analytics", responses={404: ERROR_RESPONSES[404]})
async def admin_quiz_analytics(quiz_id: str, admin: PlayerAccount = Depends(require_admin),
                               db: AsyncSession = Depends(get_db)):
    result = await AnalyticsService(db).get_quiz_analytics(quiz_id)
    if not result.success:
        return error_response(result)
    analytics = QuizAnalyticsOut.model_validate(result["analytics"])
    analytics.completion_rate = round(analytics.completion_rate, 1)
    analytics.average_score = round(analytics.average_score, 1)
    return AnalyticsResponse(
        quiz_id=result["quiz"].id,
        title=result["quiz"].title,
        analytics=analytics,
        score_entries=[ScoreEntryOut.model_validate(e) for e in result["score_entries"]],
        recent_attempts=[AttemptOut.model_validate(a) for a in result["recent_attempts"]],
    )


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)
