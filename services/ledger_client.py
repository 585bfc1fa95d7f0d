from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.logger import logger


class LedgerError(Exception):
    """The central account service could not be reached or refused the call."""
    pass


@dataclass(frozen=True)
class Balance:
    coins: int = 0
    tokens: int = 0
    xp: int = 0
    level: int = 1


def balance_from_account(account: Dict[str, Any]) -> Balance:
    wallet = account.get("coin_wallets") or {}
    profile = account.get("xp_profiles") or {}
    return Balance(
        coins=wallet.get("coins_balance") or 0,
        tokens=wallet.get("tokens_balance") or 0,
        xp=profile.get("xp_total") or 0,
        level=profile.get("level") or 1,
    )


class CentralAccountClient:
    """HTTP client for the central account service (accounts, auth, reward ledger)."""

    def __init__(self, base_url: str = None, timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or settings.CENTRAL_API_URL).rstrip("/")
        self.admin_email = settings.CENTRAL_ADMIN_EMAIL
        self.platform_code = settings.CENTRAL_PLATFORM_CODE
        self.platform_key = settings.CENTRAL_PLATFORM_KEY
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.LEDGER_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Central API request failed", method=method, path=path, error=str(e))
            raise LedgerError(f"Network error calling {path}: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise LedgerError(f"Invalid JSON from central API ({response.status_code})") from e

    # === Accounts ===

    async def find_account(self, search: str) -> Optional[Dict[str, Any]]:
        """Look an account up by email or id. None when nothing matches."""
        response = await self._request(
            "GET", "/api/accounts",
            params={"search": search},
            headers={"x-admin-email": self.admin_email},
        )
        if not response.is_success:
            logger.error("Failed to check account", status=response.status_code, error=response.text)
            raise LedgerError(f"Account lookup failed: {response.status_code}")

        data = self._json(response).get("data") or []
        return data[0] if data else None

    async def create_account(self, email: str, name: str, password: str) -> str:
        """Create an account, or return the id of the existing one."""
        existing = await self.find_account(email)
        if existing:
            return existing["id"]

        response = await self._request(
            "POST", "/api/accounts",
            headers={"x-admin-email": self.admin_email},
            json={"email": email, "name": name, "password": password, "initialBalance": 0},
        )
        if not response.is_success:
            logger.error("Failed to create account", status=response.status_code, error=response.text)
            raise LedgerError("Failed to create account in central system")

        account_id = self._json(response)["data"]["id"]
        logger.info("Central account created", account_id=account_id)
        return account_id

    async def get_balance(self, search: str) -> Optional[Balance]:
        account = await self.find_account(search)
        if not account:
            return None
        return balance_from_account(account)

    # === Ledger ===

    async def record_activity(
        self,
        account_id: str,
        event_type: str,
        coins: int,
        tokens: int,
        xp: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        response = await self._request(
            "POST", "/api/platforms",
            headers={
                "x-platform-code": self.platform_code,
                "x-platform-key": self.platform_key,
            },
            json={
                "accountId": account_id,
                "eventType": event_type,
                "coinsChange": coins,
                "tokensChange": tokens,
                "xpChange": xp,
                "metadata": metadata or {},
            },
        )
        if not response.is_success:
            logger.error("Failed to record activity", status=response.status_code, error=response.text)
            raise LedgerError(f"Ledger rejected {event_type}: {response.status_code}")

    # === Auth (proxied as-is) ===

    async def _auth(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        body = self._json(response)
        if response.status_code >= 500:
            raise LedgerError(f"Central auth error: {response.status_code}")
        if response.status_code >= 400 and "success" not in body:
            body = {"success": False, "error": body.get("error") or f"HTTP {response.status_code}"}
        return body

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return await self._auth("POST", "/api/auth/login", json={"email": email, "password": password})

    async def register(self, email: str, password: str, name: str) -> Dict[str, Any]:
        return await self._auth("POST", "/api/auth/register", json={"email": email, "password": password, "name": name})

    async def me(self, access_token: str) -> Dict[str, Any]:
        return await self._auth("GET", "/api/auth/me", headers={"Authorization": f"Bearer {access_token}"})

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return await self._auth("POST", "/api/auth/refresh", json={"refresh_token": refresh_token})
