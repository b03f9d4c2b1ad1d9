import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import Settings
from ..errors import UpstreamServiceError
from ..log import get_logger

logger = get_logger(__name__)

SERVICE = "adobe_sign"
API_PREFIX = "api/rest/v6"
WEBHOOK_EVENTS = [
    "AGREEMENT_CREATED",
    "AGREEMENT_ACTION_COMPLETED",
    "AGREEMENT_EMAIL_VIEWED",
    "AGREEMENT_WORKFLOW_COMPLETED",
]


def _describe(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"{exc.response.status_code} {exc.response.text[:200]}"
    return str(exc) or exc.__class__.__name__


def _json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise UpstreamServiceError(f"adobe sign returned a non-JSON body for {resp.request.url}", service=SERVICE) from exc
    if not isinstance(body, dict):
        raise UpstreamServiceError(f"adobe sign returned an unexpected body for {resp.request.url}", service=SERVICE)
    return body


def _field(resp: httpx.Response, key: str) -> Any:
    value = _json(resp).get(key)
    if not value:
        raise UpstreamServiceError(f"adobe sign response from {resp.request.url} has no {key}", service=SERVICE)
    return value


class SignatureProvider:
    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    @property
    def _auth(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.adobe_access_token}"}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {**self._auth, **kwargs.pop("headers", {})}
        try:
            resp = await self.client.request(method, url, headers=headers, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("adobe sign request failed", method=method, url=url, error=_describe(exc))
            raise UpstreamServiceError(f"adobe sign {method} failed: {_describe(exc)}", service=SERVICE) from exc
        return resp

    async def api_base(self) -> str:
        # resolved per call; the access point is never stored on shared state
        resp = await self._request("GET", self.settings.adobe_base_uris_url)
        access_point = _field(resp, "apiAccessPoint")
        return f"{access_point.rstrip('/')}/{API_PREFIX}"

    async def upload_document(self, base: str, pdf_path: Path) -> str:
        data = await asyncio.to_thread(Path(pdf_path).read_bytes)
        files = {"File": ("document.pdf", data, "application/pdf")}
        resp = await self._request("POST", f"{base}/transientDocuments", files=files)
        transient_id = _field(resp, "transientDocumentId")
        logger.info("uploaded transient document", transient_document_id=transient_id)
        return transient_id

    def agreement_payload(self, transient_id: str, signer_emails: Sequence[str]) -> Dict[str, Any]:
        participants = [
            {
                "memberInfos": [{"email": email}],
                "order": order,
                "role": "SIGNER",
                "name": f"signer_{order}",
            }
            for order, email in enumerate(signer_emails, start=1)
        ]
        return {
            "fileInfos": [{"transientDocumentId": transient_id}],
            "name": self.settings.adobe_agreement_name,
            "participantSetsInfo": participants,
            "signatureType": "ESIGN",
            "state": "IN_PROCESS",
        }

    async def send_for_signature(self, pdf_path: Path, signer_emails: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        signers = list(signer_emails or self.settings.adobe_signer_emails)
        if not signers:
            raise UpstreamServiceError("no signers configured for agreements", service=SERVICE)
        base = await self.api_base()
        transient_id = await self.upload_document(base, pdf_path)
        resp = await self._request("POST", f"{base}/agreements", json=self.agreement_payload(transient_id, signers))
        agreement_id = _field(resp, "id")
        logger.info("agreement sent", agreement_id=agreement_id)
        return _json(resp)

    async def get_agreement(self, agreement_id: str) -> Dict[str, Any]:
        base = await self.api_base()
        return await self._fetch_agreement(base, agreement_id)

    async def _fetch_agreement(self, base: str, agreement_id: str) -> Dict[str, Any]:
        url = f"{base}/agreements/{agreement_id}"
        agreement = _json(await self._request("GET", url))
        status = agreement.get("status")
        if status == "OUT_FOR_SIGNATURE":
            signing_urls = _json(await self._request("GET", f"{url}/signingUrls"))
            return {**agreement, "signingUrls": signing_urls}
        if status in ("SIGNED", "COMPLETED"):
            signed = _json(await self._request("GET", f"{url}/combinedDocument/url"))
            return {**agreement, "signedDocumentUrl": signed.get("url")}
        return agreement

    async def list_webhooks(self, base: str) -> List[Dict[str, Any]]:
        resp = await self._request("GET", f"{base}/webhooks", params={"showInActive": "true"})
        return _json(resp).get("userWebhookList") or []

    async def delete_webhook(self, base: str, webhook_id: str) -> None:
        await self._request("DELETE", f"{base}/webhooks/{webhook_id}")
        logger.info("deleted webhook", webhook_id=webhook_id)

    async def delete_all_webhooks(self, base: str) -> int:
        webhooks = await self.list_webhooks(base)
        for webhook in webhooks:
            await self.delete_webhook(base, webhook["id"])
        return len(webhooks)

    async def register_webhook(self, agreement_id: str, url: Optional[str] = None) -> Optional[Dict[str, Any]]:
        base = await self.api_base()
        await self.delete_all_webhooks(base)
        payload = {
            "name": "Agreement Webhook",
            "scope": "RESOURCE",
            "state": "ACTIVE",
            "resourceType": "AGREEMENT",
            "resourceId": agreement_id,
            "webhookUrlInfo": {"url": url or self.settings.adobe_webhook_url},
            "webhookSubscriptionEvents": WEBHOOK_EVENTS,
            "webhookConditionalParams": {
                "webhookInfoInResponse": {"agreement": True, "participant": True},
            },
        }
        try:
            resp = await self.client.post(f"{base}/webhooks", json=payload, headers=self._auth)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            try:
                body = exc.response.json()
            except ValueError:
                body = {}
            if exc.response.status_code == 400 and body.get("code") == "DUPLICATE_WEBHOOK_CONFIGURATION":
                logger.info("webhook already registered", agreement_id=agreement_id)
                return None
            raise UpstreamServiceError(f"adobe sign webhook registration failed: {_describe(exc)}", service=SERVICE) from exc
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"adobe sign webhook registration failed: {_describe(exc)}", service=SERVICE) from exc
        logger.info("webhook registered", agreement_id=agreement_id)
        return _json(resp)
