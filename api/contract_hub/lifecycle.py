"""
Contract lifecycle: document creation, signature and status tracking.

Status moves along a fixed table::

    (new) -> pending_changes
    pending_changes -> pending_fohr_to_initiate_signatures
    pending_fohr_to_initiate_signatures -> out_for_signature | pending_changes
    out_for_signature -> signed | completed
    signed -> completed

Local records are only written after the remote call that matters succeeded.
Once an agreement exists remotely it is recorded, even if the follow-up
agreement lookup fails. A per-signer completion event only counts as
``signed`` when the live agreement says every signer is done.
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .concurrency import KeyedLocks, with_deadline
from .config import Settings
from .errors import DocumentGenerationError, InvalidTransitionError, NotFoundError, UpstreamServiceError
from .log import get_state_logger, log_status_change
from .models import Contract, ContractStatus
from .services.google_drive import doc_edit_url
from .store import JsonCollectionStore

logger = get_state_logger(__name__)

TRANSITIONS = {
    ContractStatus.PENDING_CHANGES: {ContractStatus.PENDING_SIGNATURE_REQUEST},
    ContractStatus.PENDING_SIGNATURE_REQUEST: {ContractStatus.OUT_FOR_SIGNATURE, ContractStatus.PENDING_CHANGES},
    ContractStatus.OUT_FOR_SIGNATURE: {ContractStatus.SIGNED, ContractStatus.COMPLETED},
    ContractStatus.SIGNED: {ContractStatus.COMPLETED},
    ContractStatus.COMPLETED: set(),
}

SIGNATURE_EVENTS = {
    "AGREEMENT_ACTION_COMPLETED": ContractStatus.SIGNED,
    "AGREEMENT_WORKFLOW_COMPLETED": ContractStatus.COMPLETED,
}

# fired once per participant; only the live agreement says whether everyone has signed
CONFIRMED_BY_AGREEMENT = {"AGREEMENT_ACTION_COMPLETED": "SIGNED"}


def can_transition(current: ContractStatus, target: ContractStatus) -> bool:
    return current == target or target in TRANSITIONS[current]


def check_transition(current: ContractStatus, target: ContractStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


class ContractLifecycle:
    def __init__(self, settings: Settings, store: JsonCollectionStore, documents, signatures):
        self.settings = settings
        self.store = store
        self.documents = documents
        self.signatures = signatures
        self._participant_locks = KeyedLocks()

    def _deadline(self, awaitable, service: str):
        return with_deadline(awaitable, self.settings.collaborator_timeout, service)

    async def get_contract(self, participant_id: int) -> Optional[Contract]:
        return self.store.find_by_key(await self.store.read(), participant_id)

    async def _require(self, participant_id: int) -> Contract:
        contract = await self.get_contract(participant_id)
        if contract is None:
            raise NotFoundError(f"no contract for participant {participant_id}", key=participant_id)
        return contract

    async def _patch(self, participant_id: int, fields: Dict[str, Any]) -> Contract:
        async with self.store.lock:
            collection = self.store.patch(await self.store.read(), participant_id, fields)
            await self.store.write(collection)
        return self.store.find_by_key(collection, participant_id)

    async def create_contract_document(
        self,
        document_url: str,
        participant_name: str,
        participant_id: int,
        campaign_id: Optional[int] = None,
    ) -> Contract:
        async with self._participant_locks(participant_id):
            try:
                doc_id = await self._deadline(
                    self.documents.create_document(document_url, participant_name), "google_drive"
                )
            except DocumentGenerationError:
                raise
            except UpstreamServiceError as exc:
                raise DocumentGenerationError(str(exc), kind=exc.kind) from exc
            contract = Contract(
                participant_id=participant_id,
                doc_id=doc_id,
                doc_url=doc_edit_url(doc_id),
                status=ContractStatus.PENDING_CHANGES,
                campaign_id=campaign_id,
            )
            async with self.store.lock:
                await self.store.write(self.store.upsert(await self.store.read(), contract))
        log_status_change(logger, participant_id, None, contract.status.value, "document_created", {"doc_id": doc_id})
        return contract

    async def update_status(self, participant_id: int, status: ContractStatus, **fields) -> Contract:
        status = ContractStatus(status)
        async with self._participant_locks(participant_id):
            current = await self._require(participant_id)
            check_transition(current.status, status)
            contract = await self._patch(participant_id, {**fields, "status": status})
        log_status_change(logger, participant_id, current.status.value, status.value, "status_update")
        return contract

    def discard_artifact(self, path: Path) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.warning("temporary artifact already gone", path=str(path))

    async def _agreement_or_none(self, agreement_id: str) -> Optional[Dict[str, Any]]:
        # the agreement already exists remotely; a failed lookup must not undo that
        try:
            return await self._deadline(self.signatures.get_agreement(agreement_id), "adobe_sign")
        except UpstreamServiceError as exc:
            logger.warning("agreement lookup failed after send", agreement_id=agreement_id, error=str(exc))
            return None

    async def send_for_signature(self, participant_id: int) -> Dict[str, Any]:
        async with self._participant_locks(participant_id):
            contract = await self._require(participant_id)
            check_transition(contract.status, ContractStatus.OUT_FOR_SIGNATURE)
            if not contract.doc_id:
                raise NotFoundError(f"contract for participant {participant_id} has no document", key=participant_id)

            pdf_path = await self._deadline(self.documents.export_pdf(contract.doc_id), "google_drive")
            try:
                created = await self._deadline(self.signatures.send_for_signature(pdf_path), "adobe_sign")
            finally:
                self.discard_artifact(pdf_path)

            agreement_id = created.get("id") if isinstance(created, dict) else None
            if not agreement_id:
                raise UpstreamServiceError("signature provider returned no agreement id", service="adobe_sign")
            await self._patch(
                participant_id, {"status": ContractStatus.OUT_FOR_SIGNATURE, "agreement_id": agreement_id}
            )
        log_status_change(
            logger,
            participant_id,
            contract.status.value,
            ContractStatus.OUT_FOR_SIGNATURE.value,
            "sent_for_signature",
            {"agreement_id": agreement_id},
        )
        provider_fields = {k: v for k, v in created.items() if k != "id"}
        return {
            "status": ContractStatus.OUT_FOR_SIGNATURE.value,
            **provider_fields,
            "agreement": await self._agreement_or_none(agreement_id),
        }

    async def get_contract_with_agreement(self, participant_id: int) -> Optional[Dict[str, Any]]:
        contract = await self.get_contract(participant_id)
        if contract is None:
            return None
        agreement = None
        if contract.agreement_id:
            agreement = await self._deadline(self.signatures.get_agreement(contract.agreement_id), "adobe_sign")
        return {**contract.to_json(), "agreement": agreement}

    async def record_signature_event(self, agreement_id: Optional[str], event: Optional[str]) -> Optional[Contract]:
        target = SIGNATURE_EVENTS.get(event or "")
        if not agreement_id or target is None:
            return None
        match = next((c for c in await self.store.read() if c.agreement_id == agreement_id), None)
        if match is None:
            logger.info("signature event for unknown agreement", agreement_id=agreement_id, signature_event=event)
            return None
        async with self._participant_locks(match.participant_id):
            current = await self._require(match.participant_id)
            if current.agreement_id != agreement_id or not can_transition(current.status, target):
                logger.info(
                    "ignoring signature event",
                    participant_id=current.participant_id,
                    status=current.status.value,
                    signature_event=event,
                )
                return None
            required = CONFIRMED_BY_AGREEMENT.get(event)
            if required:
                agreement = await self._deadline(self.signatures.get_agreement(agreement_id), "adobe_sign")
                if (agreement or {}).get("status") != required:
                    logger.info(
                        "agreement still waiting on signers",
                        participant_id=current.participant_id,
                        agreement_id=agreement_id,
                        agreement_status=(agreement or {}).get("status"),
                    )
                    return None
            contract = await self._patch(current.participant_id, {"status": target})
        log_status_change(
            logger, current.participant_id, current.status.value, target.value, event, {"agreement_id": agreement_id}
        )
        return contract
