from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import ContractStatus


class Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContractUpload(Body):
    document_url: str
    participant_name: str
    participant_id: int
    campaign_id: Optional[int] = None


class ContractUpdate(Body):
    participant_id: int
    status: ContractStatus
    agreement_id: Optional[str] = None


class ParticipantRef(Body):
    participant_id: int


class DocumentRef(Body):
    doc_id: str


class AgreementRef(Body):
    agreement_id: str
    url: Optional[str] = None


class ExportRequest(BaseModel):
    url: str
    token: str


class AccountCreate(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class AccountLinkCreate(Body):
    account_id: str
    refresh_url: str
    return_url: str


class AccountRef(Body):
    account_id: str


class FundingPayment(Body):
    amount: int
    currency: str = "usd"
    brand_account_id: str
    metadata: Dict[str, Any] = {}


class InfluencerPayment(Body):
    amount: int
    currency: str = "usd"
    influencer_account_id: str
    brand_account_id: str
    metadata: Dict[str, Any] = {}


class PayoutCreate(Body):
    amount: int
    currency: str = "usd"
    account_id: str
    metadata: Dict[str, Any] = {}


class AccountDelete(Body):
    disconnected_by: str = "system"


class CleanupAll(Body):
    confirm: Optional[str] = None
    disconnected_by: str = "system"


class CleanupByDomain(Body):
    domain: Optional[str] = None
    confirm: Optional[str] = None
    disconnected_by: str = "system"
