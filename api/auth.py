from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from core.config import settings
from core.logger import logger
from services.attempt_service import PlayerAccount
from services.ledger_client import CentralAccountClient, LedgerError
from services.reward_service import RewardDispatcher
from utils.hashing import normalize_email


def get_ledger(request: Request) -> CentralAccountClient:
    return request.app.state.ledger


def get_dispatcher(request: Request) -> RewardDispatcher:
    return request.app.state.dispatcher


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        return token or None
    return None


async def get_optional_account(
    authorization: str = Header(None),
    ledger: CentralAccountClient = Depends(get_ledger),
) -> Optional[PlayerAccount]:
    """Resolve the central session behind a Bearer token; anonymous play gets None."""
    token = bearer_token(authorization)
    if not token:
        return None

    try:
        body = await ledger.me(token)
    except LedgerError as e:
        logger.warning("Session lookup failed", error=str(e))
        return None

    if not body.get("success"):
        return None

    user = body.get("user") or {}
    account = body.get("account") or {}
    email = user.get("email") or account.get("email")
    if not email:
        return None
    return PlayerAccount(
        email=email,
        name=user.get("name") or account.get("name"),
        # Auth user ids are not ledger account ids; without one the email lookup runs
        account_id=account.get("id"),
    )


async def get_current_account(account: Optional[PlayerAccount] = Depends(get_optional_account)) -> PlayerAccount:
    if account is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return account


async def require_admin(account: PlayerAccount = Depends(get_current_account)) -> PlayerAccount:
    if normalize_email(account.email) not in settings.admin_emails:
        logger.warning("Admin access denied", account_id=account.account_id)
        raise HTTPException(status_code=403, detail="Forbidden")
    return account
