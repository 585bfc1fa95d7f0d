from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models.user import User
from core.logger import logger
from core.result import ActionResult, EXTERNAL, NOT_FOUND
from services.ledger_client import CentralAccountClient, LedgerError
from utils.hashing import normalize_email

class UserService:
    def __init__(self, db: AsyncSession, ledger: CentralAccountClient):
        self.db = db
        self.ledger = ledger

    async def get_user(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).filter(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def cache_account(self, email: str, account_id: str, name: str = None) -> User:
        """Store (or refresh) the local email -> account id mapping."""
        user = await self.get_user(email)
        if not user:
            user = User(email=normalize_email(email), name=name, account_id=account_id)
            self.db.add(user)
            try:
                await self.db.commit()
                logger.info("Account mapping cached", account_id=account_id)
                return user
            except IntegrityError:
                # Another request cached the same email first
                await self.db.rollback()
                logger.info("Account mapping cached concurrently", account_id=account_id)
                user = await self.get_user(email)

        needs_commit = False
        if user.account_id != account_id:
            user.account_id = account_id
            needs_commit = True
        if name and not user.name:
            user.name = name
            needs_commit = True
        if needs_commit:
            await self.db.commit()
        return user

    async def get_or_create_account_id(self, email: str, name: str = None, account_id: str = None) -> Optional[str]:
        """
        Resolve the central account id for an email, caching it locally.

        A known account_id (e.g. from a validated session) is cached directly;
        otherwise the local table is consulted before the central service.
        """
        if account_id:
            await self._cache_quietly(email, account_id, name)
            return account_id

        user = await self.get_user(email)
        if user and user.account_id:
            return user.account_id

        try:
            account = await self.ledger.find_account(normalize_email(email))
        except LedgerError as e:
            logger.warning("Account lookup failed", error=str(e))
            return None

        if not account:
            return None

        await self._cache_quietly(email, account["id"], name or account.get("name"))
        return account["id"]

    async def _cache_quietly(self, email: str, account_id: str, name: str = None):
        """The central account is authoritative; a failed cache write is rebuilt on next lookup."""
        try:
            await self.cache_account(email, account_id, name)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to cache account mapping", error=str(e))

    async def signup(self, email: str, name: str, password: str) -> ActionResult:
        """Create the central account (or reuse it) and cache the mapping."""
        try:
            account_id = await self.ledger.create_account(normalize_email(email), name, password)
        except LedgerError as e:
            return ActionResult.fail(str(e), code=EXTERNAL)

        await self._cache_quietly(email, account_id, name)
        return ActionResult.ok(account_id=account_id)

    async def get_balance(self, email: str) -> ActionResult:
        try:
            balance = await self.ledger.get_balance(normalize_email(email))
        except LedgerError as e:
            return ActionResult.fail(str(e), code=EXTERNAL)
        if balance is None:
            return ActionResult.fail("Account not found", code=NOT_FOUND)
        return ActionResult.ok(
            coins=balance.coins, tokens=balance.tokens, xp=balance.xp, level=balance.level
        )
