from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from ..accounts import AccountRegistry
from ..deps import get_payments, get_registry
from ..log import get_logger
from ..schemas import (
    AccountCreate,
    AccountDelete,
    AccountLinkCreate,
    AccountRef,
    CleanupAll,
    CleanupByDomain,
    FundingPayment,
    InfluencerPayment,
    PayoutCreate,
)

router = APIRouter()
logger = get_logger(__name__)

CONFIRM_DELETE_ALL = "DELETE_ALL_ACCOUNTS"
CONFIRM_DELETE_BY_DOMAIN = "DELETE_BY_DOMAIN"


@router.post("/create-account")
async def create_account(payload: AccountCreate, registry: AccountRegistry = Depends(get_registry)):
    return await registry.create_connect_account(payload.email, payload.name)


@router.post("/create-account-link")
async def create_account_link(payload: AccountLinkCreate, payments=Depends(get_payments)):
    link = await payments.create_account_link(payload.account_id, payload.refresh_url, payload.return_url)
    return {"url": link["url"]}


@router.post("/create-login-link")
async def create_login_link(payload: AccountRef, payments=Depends(get_payments)):
    link = await payments.create_login_link(payload.account_id)
    return {"url": link["url"]}


@router.get("/account")
async def get_account(email: Optional[str] = None, registry: AccountRegistry = Depends(get_registry)):
    return await registry.account_status(email)


@router.get("/account/{account_id}/balance")
async def get_account_balance(account_id: str, payments=Depends(get_payments)):
    return {"balance": await payments.get_account_balance(account_id)}


@router.post("/create-funding-payment")
async def create_funding_payment(payload: FundingPayment, payments=Depends(get_payments)):
    intent = await payments.create_funding_payment_intent(
        payload.amount, payload.currency, payload.brand_account_id, payload.metadata
    )
    return {"clientSecret": intent["client_secret"], "paymentIntentId": intent["id"]}


@router.post("/create-influencer-payment")
async def create_influencer_payment(payload: InfluencerPayment, payments=Depends(get_payments)):
    intent = await payments.create_influencer_payment_intent(
        payload.amount,
        payload.currency,
        payload.influencer_account_id,
        payload.brand_account_id,
        payload.metadata,
    )
    return {"clientSecret": intent["client_secret"], "paymentIntentId": intent["id"]}


@router.post("/create-payout")
async def create_payout(payload: PayoutCreate, payments=Depends(get_payments)):
    payout = await payments.create_payout(payload.amount, payload.currency, payload.account_id, payload.metadata)
    return {"payout": payout}


@router.get("/account/{account_id}/transfers")
async def list_transfers(
    account_id: str,
    limit: int = 10,
    starting_after: Optional[str] = None,
    payments=Depends(get_payments),
):
    return {"transfers": await payments.list_transfers(account_id, limit=limit, starting_after=starting_after)}


@router.get("/cleanup/summary")
async def cleanup_summary(registry: AccountRegistry = Depends(get_registry)):
    return {"summary": await registry.cleanup_summary()}


@router.get("/accounts")
async def list_accounts(limit: int = 100, starting_after: Optional[str] = None, payments=Depends(get_payments)):
    page = await payments.list_accounts(limit=limit, starting_after=starting_after)
    return {"accounts": page["data"], "has_more": page["has_more"]}


@router.delete("/account/{account_id}")
async def delete_account(
    account_id: str,
    payload: Optional[AccountDelete] = None,
    registry: AccountRegistry = Depends(get_registry),
):
    disconnected_by = payload.disconnected_by if payload else "system"
    deleted = await registry.disconnect(account_id, disconnected_by)
    return {"message": "Account deleted successfully", "account": deleted}


@router.delete("/cleanup/all")
async def cleanup_all(payload: CleanupAll, registry: AccountRegistry = Depends(get_registry)):
    if payload.confirm != CONFIRM_DELETE_ALL:
        raise HTTPException(400, f"Confirmation required. Send {{ confirm: '{CONFIRM_DELETE_ALL}' }} in request body.")
    results = await registry.delete_all(payload.disconnected_by)
    return {"message": "Account cleanup completed", "results": results}


@router.delete("/cleanup/by-domain")
async def cleanup_by_domain(payload: CleanupByDomain, registry: AccountRegistry = Depends(get_registry)):
    if not payload.domain:
        raise HTTPException(400, "Domain parameter required (e.g., '@test.com')")
    if payload.confirm != CONFIRM_DELETE_BY_DOMAIN:
        raise HTTPException(
            400, f"Confirmation required. Send {{ confirm: '{CONFIRM_DELETE_BY_DOMAIN}' }} in request body."
        )
    results = await registry.delete_by_domain(payload.domain, payload.disconnected_by)
    return {"message": f"Account cleanup completed for domain: {payload.domain}", "results": results}


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    payments=Depends(get_payments),
):
    payload = await request.body()
    try:
        event = payments.construct_webhook_event(payload, stripe_signature)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("webhook signature verification failed", error=str(exc))
        raise HTTPException(400, f"Webhook Error: {exc}")

    event_type = event["type"]
    object_id = event["data"]["object"].get("id")
    if event_type in ("account.updated", "payment_intent.succeeded", "transfer.created"):
        logger.info("stripe event", event_type=event_type, object_id=object_id)
    else:
        logger.info("unhandled stripe event", event_type=event_type, object_id=object_id)
    return {"received": True}
