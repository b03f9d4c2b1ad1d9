from pathlib import Path
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient

from contract_hub.config import Settings
from contract_hub.errors import DocumentGenerationError, UpstreamServiceError
from contract_hub.main import create_app

SIMPLE_PDF = (
    b"%PDF-1.4\n"
    b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
    b"2 0 obj\n<< /Type /Pages /Count 1 /Kids [3 0 R] >>\nendobj\n"
    b"3 0 obj\n<< /Type /Page /Parent 2 0 R /MediaBox [0 0 300 144] /Contents 4 0 R >>\nendobj\n"
    b"4 0 obj\n<< /Length 36 >>\nstream\nBT /F1 24 Tf 72 100 Td (Hello) Tj ET\nendstream\nendobj\n"
    b"xref\n0 5\n"
    b"0000000000 65535 f \n"
    b"0000000009 00000 n \n"
    b"0000000058 00000 n \n"
    b"0000000115 00000 n \n"
    b"0000000202 00000 n \n"
    b"trailer\n<< /Size 5 /Root 1 0 R >>\nstartxref\n288\n%%EOF\n"
)


class FakeDocuments:
    def __init__(self, tmp_dir: Path, doc_id: str = "ABC"):
        self.tmp_dir = tmp_dir
        self.doc_id = doc_id
        self.created: List[tuple] = []
        self.exported: List[Path] = []
        self.fail_create = False

    async def create_document(self, source_url, participant_name):
        if self.fail_create:
            raise DocumentGenerationError("drive refused the upload")
        self.created.append((source_url, participant_name))
        return self.doc_id

    async def export_pdf(self, doc_id):
        path = self.tmp_dir / f"{doc_id}-{len(self.exported)}.pdf"
        path.write_bytes(SIMPLE_PDF)
        self.exported.append(path)
        return path

    async def remove_anchor_tag(self, doc_id):
        return True


class FakeSignatures:
    def __init__(self):
        self.sent: List[Path] = []
        self.agreement_lookups: List[str] = []
        self.registered: List[str] = []
        self.fail_send = False
        self.fail_lookup = False
        self.agreement = {"id": "AGR-1", "status": "OUT_FOR_SIGNATURE", "signingUrls": {"url": "https://sign/1"}}

    async def send_for_signature(self, pdf_path):
        assert Path(pdf_path).exists()
        self.sent.append(Path(pdf_path))
        if self.fail_send:
            raise UpstreamServiceError("adobe sign POST failed: 500", service="adobe_sign")
        return {"id": "AGR-1"}

    async def get_agreement(self, agreement_id):
        self.agreement_lookups.append(agreement_id)
        if self.fail_lookup:
            raise UpstreamServiceError("adobe sign GET failed: 404 AGREEMENT_NOT_SIGNABLE", service="adobe_sign")
        return self.agreement

    async def register_webhook(self, agreement_id, url=None):
        self.registered.append(agreement_id)
        return {"id": "WH-1"}


class FakePayments:
    def __init__(self):
        self.accounts: Dict[str, dict] = {}
        self.deleted: List[str] = []
        self.fail_delete: set = set()
        self._next = 1

    def add_remote(self, email, account_id=None):
        account_id = account_id or f"acct_{self._next}"
        self._next += 1
        self.accounts[account_id] = {"id": account_id, "email": email, "type": "express", "created": 1700000000}
        return account_id

    async def create_connect_account(self, email, name, is_brand):
        account_id = self.add_remote(email)
        self.accounts[account_id]["business_type"] = "company" if is_brand else "individual"
        return self.accounts[account_id]

    async def create_account_link(self, account_id, refresh_url, return_url):
        return {"url": f"https://connect.stripe.test/setup/{account_id}"}

    async def create_login_link(self, account_id):
        return {"url": f"https://connect.stripe.test/login/{account_id}"}

    async def get_account(self, account_id):
        return self.accounts[account_id]

    async def list_accounts(self, limit=100, starting_after=None):
        ids = sorted(self.accounts)
        if starting_after:
            ids = ids[ids.index(starting_after) + 1:]
        page = ids[:limit]
        return {"data": [self.accounts[i] for i in page], "has_more": len(ids) > limit}

    async def iter_accounts(self, page_size=100):
        starting_after = None
        while True:
            page = await self.list_accounts(limit=2, starting_after=starting_after)
            for account in page["data"]:
                yield account
            if not page["has_more"]:
                return
            starting_after = page["data"][-1]["id"]

    async def delete_account(self, account_id):
        if account_id in self.fail_delete:
            raise UpstreamServiceError(f"stripe: cannot delete {account_id}", service="stripe")
        self.deleted.append(account_id)
        self.accounts.pop(account_id, None)
        return {"id": account_id, "deleted": True}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        tmp_dir=tmp_path / "tmp",
        brand_email="brand@example.com",
        brand_name="Acme Brand",
        adobe_signer_emails=("participant@example.com", "contracts@example.com"),
        collaborator_timeout=5.0,
        cleanup_deletes_per_second=0,
        stripe_webhook_secret="whsec_test",
    )


@pytest.fixture
def documents(settings):
    settings.tmp_dir.mkdir(parents=True, exist_ok=True)
    return FakeDocuments(settings.tmp_dir)


@pytest.fixture
def signatures():
    return FakeSignatures()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def app(settings, documents, signatures, payments):
    return create_app(settings, documents=documents, signatures=signatures, payments=payments)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def pdf_bytes() -> bytes:
    return SIMPLE_PDF
