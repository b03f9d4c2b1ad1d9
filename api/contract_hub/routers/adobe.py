from fastapi import APIRouter, Depends, Request, Response

from ..deps import get_lifecycle, get_signatures
from ..lifecycle import ContractLifecycle
from ..log import get_logger
from ..schemas import AgreementRef

router = APIRouter()
logger = get_logger(__name__)

CLIENT_ID_HEADER = "X-AdobeSign-ClientId"


def _echo(request: Request) -> Response:
    # Adobe Sign only keeps a webhook alive when its client id is echoed back
    client_id = request.headers.get(CLIENT_ID_HEADER)
    headers = {CLIENT_ID_HEADER: client_id} if client_id else {}
    return Response(status_code=200, headers=headers)


@router.get("/adobe-webhook")
async def verify_adobe_webhook(request: Request):
    logger.info("adobe webhook verification", client_id=request.headers.get(CLIENT_ID_HEADER))
    return _echo(request)


@router.post("/adobe-webhook")
async def adobe_webhook(request: Request, lifecycle: ContractLifecycle = Depends(get_lifecycle)):
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    event = payload.get("event")
    agreement_id = (payload.get("agreement") or {}).get("id")
    logger.info("adobe webhook", signature_event=event, agreement_id=agreement_id)
    await lifecycle.record_signature_event(agreement_id, event)
    return _echo(request)


@router.post("/register-webhook")
async def register_webhook(payload: AgreementRef, signatures=Depends(get_signatures)):
    result = await signatures.register_webhook(payload.agreement_id, payload.url)
    return {"registered": result is not None, "webhook": result}
