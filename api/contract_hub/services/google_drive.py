"""
Google Drive / Docs adapter used to turn an uploaded contract template into
an editable Google Doc and to export that doc to PDF before signing.

Calls go straight to the REST endpoints through a shared httpx client; the
service-account credentials only provide (and refresh) the bearer token.
"""
import asyncio
import io
import json
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..config import Settings
from ..errors import DocumentGenerationError, UpstreamServiceError
from ..log import get_logger

logger = get_logger(__name__)

SERVICE = "google_drive"
SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/documents",
]
DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
DOCS_API = "https://docs.googleapis.com/v1"
GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def doc_edit_url(doc_id: str) -> str:
    return f"https://docs.google.com/document/d/{doc_id}/edit"


def _describe(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"{exc.response.status_code} {exc.response.text[:200]}"
    return str(exc) or exc.__class__.__name__


def _json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise UpstreamServiceError(f"google returned a non-JSON body for {resp.request.url}", service=SERVICE) from exc
    if not isinstance(body, dict):
        raise UpstreamServiceError(f"google returned an unexpected body for {resp.request.url}", service=SERVICE)
    return body


def formatting_requests(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Build the batchUpdate requests that normalise margins, spacing and fonts."""
    content = document.get("body", {}).get("content", [])
    if not content:
        return []
    last_index = content[-1]["endIndex"]
    whole = {"startIndex": 1, "endIndex": last_index}

    bold_ranges = []
    for element in content:
        for run in (element.get("paragraph") or {}).get("elements", []):
            style = (run.get("textRun") or {}).get("textStyle") or {}
            if style.get("bold"):
                bold_ranges.append({"startIndex": run["startIndex"], "endIndex": run["endIndex"]})

    requests = [
        {
            "updateDocumentStyle": {
                "documentStyle": {
                    "marginTop": {"magnitude": 72, "unit": "PT"},
                    "marginBottom": {"magnitude": 72, "unit": "PT"},
                    "marginLeft": {"magnitude": 72, "unit": "PT"},
                    "marginRight": {"magnitude": 72, "unit": "PT"},
                },
                "fields": "marginTop,marginBottom,marginLeft,marginRight",
            }
        },
        {
            "updateParagraphStyle": {
                "range": whole,
                "paragraphStyle": {
                    "lineSpacing": 100,
                    "spaceAbove": {"magnitude": 0, "unit": "PT"},
                    "spaceBelow": {"magnitude": 0, "unit": "PT"},
                },
                "fields": "lineSpacing,spaceAbove,spaceBelow",
            }
        },
        {
            "updateTextStyle": {
                "range": whole,
                "textStyle": {
                    "fontSize": {"magnitude": 10, "unit": "PT"},
                    "weightedFontFamily": {"fontFamily": "Arial", "weight": 400},
                },
                "fields": "fontSize,weightedFontFamily",
            }
        },
    ]
    for rng in bold_ranges:
        requests.append({
            "updateTextStyle": {
                "range": rng,
                "textStyle": {
                    "fontSize": {"magnitude": 10, "unit": "PT"},
                    "weightedFontFamily": {"fontFamily": "Arial", "weight": 700},
                    "bold": True,
                },
                "fields": "fontSize,weightedFontFamily,bold",
            }
        })
    return requests


def find_anchor(document: Dict[str, Any], text: str, elements: int = 5) -> Optional[Dict[str, int]]:
    # the placeholder only ever sits at the top of the template
    for element in document.get("body", {}).get("content", [])[:elements]:
        for run in (element.get("paragraph") or {}).get("elements", []):
            run_text = (run.get("textRun") or {}).get("content", "")
            offset = run_text.find(text)
            if offset >= 0:
                start = run["startIndex"] + offset
                return {"startIndex": start, "endIndex": start + len(text)}
    return None


class DocumentProvider:
    def __init__(self, settings: Settings, client: httpx.AsyncClient, credentials=None):
        self.settings = settings
        self.client = client
        self._credentials = credentials

    def _load_credentials(self):
        if self._credentials is None:
            self._credentials = service_account.Credentials.from_service_account_file(
                str(self.settings.google_service_account_file), scopes=SCOPES
            )
        return self._credentials

    async def _token(self) -> str:
        try:
            creds = self._load_credentials()
            if not creds.valid:
                await asyncio.to_thread(creds.refresh, GoogleAuthRequest())
        except (OSError, ValueError) as exc:
            raise UpstreamServiceError(f"google credentials unavailable: {exc}", service=SERVICE) from exc
        return creds.token

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {await self._token()}", **kwargs.pop("headers", {})}
        try:
            resp = await self.client.request(method, url, headers=headers, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("google request failed", method=method, url=url, error=_describe(exc))
            raise UpstreamServiceError(f"google {method} failed: {_describe(exc)}", service=SERVICE) from exc
        return resp

    async def download_source(self, source_url: str) -> tuple:
        try:
            resp = await self.client.get(source_url, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DocumentGenerationError(f"cannot download {source_url}: {_describe(exc)}") from exc
        content_type = resp.headers.get("content-type", "").split(";")[0].strip()
        if not content_type or content_type == "application/octet-stream":
            content_type = DOCX_MIME
        return resp.content, content_type

    async def upload_as_google_doc(self, name: str, data: bytes, mime_type: str) -> str:
        metadata: Dict[str, Any] = {"name": name, "mimeType": GOOGLE_DOC_MIME}
        if self.settings.google_drive_folder_id:
            metadata["parents"] = [self.settings.google_drive_folder_id]
        boundary = uuid.uuid4().hex
        body = (
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n"
        ).encode() + data + f"\r\n--{boundary}--".encode()
        resp = await self._request(
            "POST",
            f"{DRIVE_UPLOAD_API}/files",
            params={"uploadType": "multipart", "fields": "id", "supportsAllDrives": "true"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
        doc_id = _json(resp).get("id")
        if not doc_id:
            raise UpstreamServiceError("google upload response has no file id", service=SERVICE)
        return doc_id

    async def get_document(self, doc_id: str) -> Dict[str, Any]:
        return _json(await self._request("GET", f"{DOCS_API}/documents/{doc_id}"))

    async def batch_update(self, doc_id: str, requests: List[Dict[str, Any]]) -> None:
        await self._request("POST", f"{DOCS_API}/documents/{doc_id}:batchUpdate", json={"requests": requests})

    async def apply_formatting(self, doc_id: str) -> None:
        requests = formatting_requests(await self.get_document(doc_id))
        if requests:
            await self.batch_update(doc_id, requests)

    async def set_permissions(self, doc_id: str) -> None:
        url = f"{DRIVE_API}/files/{doc_id}/permissions"
        existing = _json(await self._request("GET", url, params={"fields": "permissions(id,emailAddress,role)"}))
        for permission in existing.get("permissions", []):
            if permission["id"] != "anyoneWithLink" and permission.get("role") != "owner":
                await self._request("DELETE", f"{url}/{permission['id']}")
        if self.settings.google_share_domain:
            await self._request(
                "POST", url, json={"role": "writer", "type": "domain", "domain": self.settings.google_share_domain}
            )
        await self._request("POST", url, json={"role": "commenter", "type": "anyone"})

    async def create_document(self, source_url: str, participant_name: str) -> str:
        """Create a shared, formatted Google Doc from a template file; returns the doc id."""
        data, mime_type = await self.download_source(source_url)
        name = f"Contract - {participant_name}"
        try:
            doc_id = await self.upload_as_google_doc(name, data, mime_type)
            await self.apply_formatting(doc_id)
            await self.set_permissions(doc_id)
        except UpstreamServiceError as exc:
            raise DocumentGenerationError(f"cannot create document {name!r}: {exc}") from exc
        logger.info("created google doc", doc_id=doc_id, name=name)
        return doc_id

    async def remove_anchor_tag(self, doc_id: str) -> bool:
        anchor = find_anchor(await self.get_document(doc_id), self.settings.contract_anchor_text)
        if anchor is None:
            logger.info("anchor text not found", doc_id=doc_id)
            return False
        await self.batch_update(doc_id, [{"deleteContentRange": {"range": anchor}}])
        logger.info("removed anchor text", doc_id=doc_id)
        return True

    async def export_pdf(self, doc_id: str) -> Path:
        """Export the doc to a temporary PDF file; the caller owns (and deletes) the file."""
        await self.remove_anchor_tag(doc_id)
        resp = await self._request("GET", f"{DRIVE_API}/files/{doc_id}/export", params={"mimeType": "application/pdf"})
        path, pages = await asyncio.to_thread(self._store_pdf, doc_id, resp.content)
        logger.info("exported pdf", doc_id=doc_id, pages=pages, path=str(path))
        return path

    def _store_pdf(self, doc_id: str, data: bytes) -> tuple:
        try:
            pages = len(PdfReader(io.BytesIO(data)).pages)
        except (PdfReadError, ValueError) as exc:
            raise DocumentGenerationError(f"export of {doc_id} is not a readable PDF: {exc}") from exc
        if not pages:
            raise DocumentGenerationError(f"export of {doc_id} has no pages")
        self.settings.tmp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=f"{doc_id}-", suffix=".pdf", dir=self.settings.tmp_dir)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        return Path(name), pages
