from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .concurrency import KeyedLocks, RateLimiter
from .config import Settings
from .errors import ContractHubError, NotFoundError, UpstreamServiceError
from .log import get_logger
from .models import Account
from .store import JsonCollectionStore

logger = get_logger(__name__)

BRAND_KEY = ("brand", None)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _creator_key(email: str) -> tuple:
    return ("creator", email.lower())


class AccountRegistry:
    """Brand/creator payment-account linkage backed by the accounts collection."""

    def __init__(self, settings: Settings, store: JsonCollectionStore, payments, limiter: Optional[RateLimiter] = None):
        self.settings = settings
        self.store = store
        self.payments = payments
        self.limiter = limiter or RateLimiter(settings.cleanup_deletes_per_second)
        self._account_locks = KeyedLocks()

    def ensure_brand(self) -> None:
        self.store.ensure_exists()
        collection = self.store.load()
        if self.store.find_by_key(collection, BRAND_KEY) is None:
            brand = Account(kind="brand", email=self.settings.brand_email, name=self.settings.brand_name)
            self.store.save(self.store.upsert(collection, brand))
            logger.info("seeded brand account", email=brand.email)

    async def get_brand(self) -> Account:
        brand = self.store.find_by_key(await self.store.read(), BRAND_KEY)
        if brand is None:
            raise NotFoundError("no brand account configured", key="brand")
        return brand

    async def get_creator(self, email: str) -> Account:
        creator = self.store.find_by_key(await self.store.read(), _creator_key(email))
        if creator is None:
            raise NotFoundError(f"no creator account for {email}", key=email)
        return creator

    async def find_by_account_id(self, account_id: str) -> Optional[Account]:
        return next((a for a in await self.store.read() if a.account_id == account_id), None)

    async def update_brand(self, fields: Dict[str, Any]) -> Account:
        async with self.store.lock:
            collection = self.store.patch(await self.store.read(), BRAND_KEY, fields)
            await self.store.write(collection)
        return self.store.find_by_key(collection, BRAND_KEY)

    async def upsert_creator(self, email: str, fields: Dict[str, Any]) -> Account:
        key = _creator_key(email)
        async with self.store.lock:
            collection = await self.store.read()
            if self.store.find_by_key(collection, key) is None:
                collection = self.store.upsert(collection, Account(kind="creator", email=email))
            collection = self.store.patch(collection, key, fields)
            await self.store.write(collection)
        return self.store.find_by_key(collection, key)

    async def _update(self, account: Account, fields: Dict[str, Any]) -> Account:
        if account.kind == "brand":
            return await self.update_brand(fields)
        return await self.upsert_creator(account.email, fields)

    async def link(self, account: Account, account_id: str) -> Account:
        return await self._update(
            account, {"account_id": account_id, "disconnected_by": None, "disconnected_on": None}
        )

    async def unlink(self, account_id: str, disconnected_by: str) -> Optional[Account]:
        account = await self.find_by_account_id(account_id)
        if account is None:
            return None
        updated = await self._update(
            account, {"account_id": None, "disconnected_by": disconnected_by, "disconnected_on": _utcnow()}
        )
        logger.info("unlinked account", account_id=account_id, kind=account.kind, email=account.email)
        return updated

    async def create_connect_account(self, email: Optional[str] = None, name: Optional[str] = None) -> Dict[str, str]:
        is_brand = not email
        if is_brand:
            brand = await self.get_brand()
            email, name, local = brand.email, brand.name, brand
        else:
            local = Account(kind="creator", email=email, name=name)
        async with self._account_locks(("brand",) if is_brand else _creator_key(email)):
            account = await self.payments.create_connect_account(email, name, is_brand)
            if not is_brand and name:
                await self.upsert_creator(email, {"name": name})
            await self.link(local, account["id"])
        logger.info("created connect account", account_id=account["id"], kind=local.kind, email=email)
        link = await self.payments.create_account_link(
            account["id"], self.settings.onboarding_refresh_url, self.settings.onboarding_return_url
        )
        return {"accountId": account["id"], "url": link["url"]}

    async def account_status(self, email: Optional[str] = None) -> Dict[str, Any]:
        entity = await self.get_creator(email) if email else await self.get_brand()
        if not entity.account_id:
            return {"account": {"disconnectedBy": entity.disconnected_by, "disconnectedOn": entity.disconnected_on}}
        return {"account": await self.payments.get_account(entity.account_id)}

    async def disconnect(self, account_id: str, disconnected_by: str):
        async with self._account_locks(account_id):
            deleted = await self.payments.delete_account(account_id)
            await self.unlink(account_id, disconnected_by)
        return deleted

    async def cleanup_summary(self) -> Dict[str, Any]:
        linked = {a.account_id for a in await self.store.read() if a.account_id}
        accounts = []
        async for account in self.payments.iter_accounts():
            accounts.append({
                "id": account["id"],
                "email": account.get("email"),
                "type": account.get("type"),
                "created": account.get("created"),
                "linked": account["id"] in linked,
            })
        return {"total": len(accounts), "accounts": accounts}

    async def _delete_matching(self, disconnected_by: str, domain: Optional[str] = None) -> Dict[str, Any]:
        suffix = domain.lower() if domain else None
        targets = []
        async for account in self.payments.iter_accounts():
            email = (account.get("email") or "").lower()
            if suffix is None or email.endswith(suffix):
                targets.append({"id": account["id"], "email": account.get("email")})

        deleted: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []
        for target in targets:
            await self.limiter.acquire()
            try:
                await self.disconnect(target["id"], disconnected_by)
            except UpstreamServiceError as exc:
                logger.warning("account deletion failed", account_id=target["id"], error=str(exc))
                failed.append({**target, "error": str(exc)})
                continue
            except ContractHubError as exc:
                logger.error("local unlink failed after remote delete", account_id=target["id"], error=str(exc))
                failed.append({**target, "error": f"deleted remotely, local unlink failed: {exc}"})
                continue
            deleted.append(target)
        logger.info("account cleanup finished", domain=domain, deleted=len(deleted), failed=len(failed))
        return {"total": len(targets), "deleted": deleted, "failed": failed}

    async def delete_all(self, disconnected_by: str) -> Dict[str, Any]:
        return await self._delete_matching(disconnected_by)

    async def delete_by_domain(self, domain: str, disconnected_by: str) -> Dict[str, Any]:
        return await self._delete_matching(disconnected_by, domain=domain)
