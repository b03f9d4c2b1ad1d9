from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    # camelCase on disk and on the wire; unknown keys are carried through untouched
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ContractStatus(str, Enum):
    PENDING_CHANGES = "pending_changes"
    PENDING_SIGNATURE_REQUEST = "pending_fohr_to_initiate_signatures"
    OUT_FOR_SIGNATURE = "out_for_signature"
    SIGNED = "signed"
    COMPLETED = "completed"


class Contract(Record):
    participant_id: int
    doc_id: Optional[str] = None
    doc_url: Optional[str] = None
    agreement_id: Optional[str] = None
    status: ContractStatus = ContractStatus.PENDING_CHANGES
    campaign_id: Optional[int] = None


class Account(Record):
    kind: Literal["brand", "creator"]
    email: str
    name: Optional[str] = None
    account_id: Optional[str] = None
    disconnected_by: Optional[str] = None
    disconnected_on: Optional[str] = None

    @model_validator(mode="after")
    def _audit_pair(self):
        if (self.disconnected_by is None) != (self.disconnected_on is None):
            raise ValueError("disconnectedBy and disconnectedOn must be set together")
        return self


def contract_key(contract: Contract) -> int:
    return contract.participant_id


def account_key(account: Account) -> tuple:
    # a single brand record; creators are unique by email
    if account.kind == "brand":
        return ("brand", None)
    return ("creator", account.email.lower())
