"""
Stripe Connect adapter.

The stripe SDK is synchronous, so every call is pushed to a worker thread and
bounded by the configured collaborator deadline. The secret key is handed to
each call instead of being written into the SDK's module-level globals.
"""
import asyncio
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Any, AsyncIterator, Dict, Optional

import stripe

from ..concurrency import with_deadline
from ..config import Settings
from ..errors import UpstreamServiceError
from ..log import get_logger

logger = get_logger(__name__)

SERVICE = "stripe"


def _drop_none(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


class PaymentProcessor:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def _call(self, fn, *args, **kwargs):
        call = partial(fn, *args, api_key=self.settings.stripe_secret_key, **kwargs)
        try:
            return await with_deadline(asyncio.to_thread(call), self.settings.collaborator_timeout, SERVICE)
        except stripe.StripeError as exc:
            logger.error("stripe call failed", call=getattr(fn, "__qualname__", str(fn)), error=str(exc))
            raise UpstreamServiceError(f"stripe: {exc.user_message or exc}", service=SERVICE) from exc

    def platform_fee(self, amount: int) -> int:
        fee = (Decimal(amount) * self.settings.platform_fee_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(fee)

    async def create_connect_account(self, email: str, name: Optional[str], is_brand: bool):
        params: Dict[str, Any] = {
            "type": "express",
            "email": email,
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            "settings": {"payouts": {"schedule": {"interval": "daily"}}},
        }
        if is_brand:
            params["business_type"] = "company"
            params["company"] = _drop_none({"name": name})
        else:
            params["business_type"] = "individual"
            params["individual"] = {"email": email}
            if name:
                params["business_profile"] = {"name": name}
        return await self._call(stripe.Account.create, **params)

    async def create_account_link(self, account_id: str, refresh_url: str, return_url: str):
        return await self._call(
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )

    async def create_login_link(self, account_id: str):
        return await self._call(stripe.Account.create_login_link, account_id)

    async def get_account(self, account_id: str):
        return await self._call(stripe.Account.retrieve, account_id)

    async def create_funding_payment_intent(self, amount: int, currency: str, brand_account_id: str, metadata=None):
        return await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            application_fee_amount=self.platform_fee(amount),
            transfer_data={"destination": brand_account_id},
            metadata={"type": "account_funding", **(metadata or {})},
        )

    async def create_influencer_payment_intent(
        self, amount: int, currency: str, influencer_account_id: str, brand_account_id: str, metadata=None
    ):
        return await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            application_fee_amount=self.platform_fee(amount),
            transfer_data={"destination": influencer_account_id},
            metadata={
                "type": "influencer_payment",
                "brand_account": brand_account_id,
                "influencer_account": influencer_account_id,
                **(metadata or {}),
            },
        )

    async def get_account_balance(self, account_id: str):
        return await self._call(stripe.Balance.retrieve, stripe_account=account_id)

    async def create_payout(self, amount: int, currency: str, account_id: str, metadata=None):
        return await self._call(
            stripe.Payout.create,
            amount=amount,
            currency=currency,
            metadata=metadata or {},
            stripe_account=account_id,
        )

    async def list_transfers(self, account_id: str, limit: int = 10, starting_after: Optional[str] = None):
        return await self._call(
            stripe.Transfer.list,
            **_drop_none({"destination": account_id, "limit": limit, "starting_after": starting_after}),
        )

    async def list_accounts(self, limit: int = 100, starting_after: Optional[str] = None):
        return await self._call(stripe.Account.list, **_drop_none({"limit": limit, "starting_after": starting_after}))

    async def iter_accounts(self, page_size: int = 100) -> AsyncIterator[Any]:
        starting_after = None
        while True:
            page = await self.list_accounts(limit=page_size, starting_after=starting_after)
            data = list(page["data"])
            for account in data:
                yield account
            if not page.get("has_more") or not data:
                return
            starting_after = data[-1]["id"]

    async def delete_account(self, account_id: str):
        return await self._call(stripe.Account.delete, account_id)

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]):
        """Verify the Stripe-Signature header; raises ValueError or stripe.SignatureVerificationError."""
        return stripe.Webhook.construct_event(payload, signature or "", self.settings.stripe_webhook_secret)
