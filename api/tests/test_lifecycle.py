import asyncio
import dataclasses

import pytest

from contract_hub.errors import (
    DocumentGenerationError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamServiceError,
)
from contract_hub.lifecycle import ContractLifecycle, can_transition
from contract_hub.models import Contract, ContractStatus, contract_key
from contract_hub.store import JsonCollectionStore

S = ContractStatus


@pytest.fixture
def store(settings):
    s = JsonCollectionStore(settings.contracts_file, Contract, contract_key)
    s.ensure_exists()
    return s


@pytest.fixture
def lifecycle(settings, store, documents, signatures):
    return ContractLifecycle(settings, store, documents, signatures)


def create(lifecycle, participant_id=42, name="Jane"):
    return asyncio.run(lifecycle.create_contract_document("https://x/doc.docx", name, participant_id, 5))


def ready_for_signature(lifecycle, participant_id=42):
    create(lifecycle, participant_id)
    asyncio.run(lifecycle.update_status(participant_id, S.PENDING_SIGNATURE_REQUEST))


def test_transition_table():
    assert can_transition(S.PENDING_CHANGES, S.PENDING_SIGNATURE_REQUEST)
    assert can_transition(S.PENDING_SIGNATURE_REQUEST, S.OUT_FOR_SIGNATURE)
    assert can_transition(S.PENDING_SIGNATURE_REQUEST, S.PENDING_CHANGES)
    assert can_transition(S.OUT_FOR_SIGNATURE, S.COMPLETED)
    assert can_transition(S.SIGNED, S.COMPLETED)
    assert can_transition(S.OUT_FOR_SIGNATURE, S.OUT_FOR_SIGNATURE)
    assert not can_transition(S.PENDING_CHANGES, S.OUT_FOR_SIGNATURE)
    assert not can_transition(S.COMPLETED, S.PENDING_CHANGES)
    assert not can_transition(S.SIGNED, S.OUT_FOR_SIGNATURE)


def test_lookup_of_unknown_participant_skips_signature_provider(lifecycle, signatures):
    for participant_id in (1, 42, 9999):
        assert asyncio.run(lifecycle.get_contract_with_agreement(participant_id)) is None
    assert signatures.agreement_lookups == []


def test_create_then_lookup_returns_pending_contract(lifecycle, signatures):
    contract = create(lifecycle)
    assert contract.doc_id == "ABC"
    assert contract.doc_url == "https://docs.google.com/document/d/ABC/edit"

    found = asyncio.run(lifecycle.get_contract_with_agreement(42))
    assert found["status"] == "pending_changes"
    assert found["docUrl"] == contract.doc_url
    assert found["docId"] == "ABC"
    assert found["campaignId"] == 5
    assert found["agreement"] is None
    assert signatures.agreement_lookups == []


def test_create_twice_keeps_single_record(lifecycle, store):
    create(lifecycle)
    asyncio.run(lifecycle.update_status(42, S.PENDING_SIGNATURE_REQUEST))
    create(lifecycle)
    records = [c for c in store.load() if c.participant_id == 42]
    assert len(records) == 1
    assert records[0].status is S.PENDING_CHANGES


def test_failed_document_generation_creates_no_record(lifecycle, documents, store):
    documents.fail_create = True
    with pytest.raises(DocumentGenerationError):
        create(lifecycle)
    assert store.load() == []


def test_upstream_failure_during_creation_is_reported_as_generation_error(lifecycle, documents, store):
    async def broken(source_url, participant_name):
        raise UpstreamServiceError("google POST failed: 503", service="google_drive")

    documents.create_document = broken
    with pytest.raises(DocumentGenerationError):
        create(lifecycle)
    assert store.load() == []


def test_update_status_on_missing_contract_raises_and_keeps_store(lifecycle, store):
    create(lifecycle, participant_id=1)
    before = store.path.read_bytes()
    with pytest.raises(NotFoundError):
        asyncio.run(lifecycle.update_status(42, S.PENDING_SIGNATURE_REQUEST))
    assert store.path.read_bytes() == before


def test_update_status_rejects_out_of_order_transition(lifecycle, store):
    create(lifecycle)
    with pytest.raises(InvalidTransitionError):
        asyncio.run(lifecycle.update_status(42, S.COMPLETED))
    assert store.load()[0].status is S.PENDING_CHANGES


def test_update_status_patches_accompanying_fields(lifecycle):
    create(lifecycle)
    contract = asyncio.run(lifecycle.update_status(42, S.PENDING_SIGNATURE_REQUEST, agreement_id="AGR-9"))
    assert contract.status is S.PENDING_SIGNATURE_REQUEST
    assert contract.agreement_id == "AGR-9"


def test_send_for_signature_persists_agreement(lifecycle, signatures, store):
    ready_for_signature(lifecycle)
    result = asyncio.run(lifecycle.send_for_signature(42))

    assert result["status"] == "out_for_signature"
    assert result["agreement"]["status"] == "OUT_FOR_SIGNATURE"
    assert "id" not in result
    contract = store.load()[0]
    assert contract.status is S.OUT_FOR_SIGNATURE
    assert contract.agreement_id == "AGR-1"


def test_send_for_signature_deletes_artifact_on_success(lifecycle, documents, signatures):
    ready_for_signature(lifecycle)
    discarded = []
    original = lifecycle.discard_artifact
    lifecycle.discard_artifact = lambda path: (discarded.append(path), original(path))

    asyncio.run(lifecycle.send_for_signature(42))

    assert discarded == documents.exported
    assert not documents.exported[0].exists()


def test_send_for_signature_deletes_artifact_when_provider_fails(lifecycle, documents, signatures, store):
    ready_for_signature(lifecycle)
    signatures.fail_send = True
    discarded = []
    original = lifecycle.discard_artifact
    lifecycle.discard_artifact = lambda path: (discarded.append(path), original(path))

    with pytest.raises(UpstreamServiceError):
        asyncio.run(lifecycle.send_for_signature(42))

    assert discarded == documents.exported
    assert len(discarded) == 1
    assert not discarded[0].exists()
    contract = store.load()[0]
    assert contract.status is S.PENDING_SIGNATURE_REQUEST
    assert contract.agreement_id is None


def test_send_for_signature_persists_when_agreement_lookup_fails(lifecycle, signatures, store):
    ready_for_signature(lifecycle)
    signatures.fail_lookup = True

    result = asyncio.run(lifecycle.send_for_signature(42))

    assert result["status"] == "out_for_signature"
    assert result["agreement"] is None
    contract = store.load()[0]
    assert contract.status is S.OUT_FOR_SIGNATURE
    assert contract.agreement_id == "AGR-1"
    assert len(signatures.sent) == 1


def test_send_for_signature_without_agreement_id_is_upstream_error(lifecycle, documents, signatures, store):
    ready_for_signature(lifecycle)

    async def no_id(pdf_path):
        return {"status": "IN_PROCESS"}

    signatures.send_for_signature = no_id
    with pytest.raises(UpstreamServiceError):
        asyncio.run(lifecycle.send_for_signature(42))
    assert store.load()[0].status is S.PENDING_SIGNATURE_REQUEST
    assert not documents.exported[0].exists()


def test_send_for_signature_requires_contract(lifecycle, documents):
    with pytest.raises(NotFoundError):
        asyncio.run(lifecycle.send_for_signature(42))
    assert documents.exported == []


def test_send_for_signature_requires_ready_contract(lifecycle, documents):
    create(lifecycle)
    with pytest.raises(InvalidTransitionError):
        asyncio.run(lifecycle.send_for_signature(42))
    assert documents.exported == []


def test_lookup_merges_live_agreement_without_persisting(lifecycle, signatures, store):
    ready_for_signature(lifecycle)
    asyncio.run(lifecycle.send_for_signature(42))
    signatures.agreement_lookups.clear()
    before = store.path.read_bytes()

    found = asyncio.run(lifecycle.get_contract_with_agreement(42))

    assert found["agreement"]["signingUrls"] == {"url": "https://sign/1"}
    assert signatures.agreement_lookups == ["AGR-1"]
    assert store.path.read_bytes() == before


def test_signature_events_advance_status(lifecycle, signatures, store):
    ready_for_signature(lifecycle)
    asyncio.run(lifecycle.send_for_signature(42))
    signatures.agreement = {"id": "AGR-1", "status": "SIGNED"}

    signed = asyncio.run(lifecycle.record_signature_event("AGR-1", "AGREEMENT_ACTION_COMPLETED"))
    assert signed.status is S.SIGNED
    done = asyncio.run(lifecycle.record_signature_event("AGR-1", "AGREEMENT_WORKFLOW_COMPLETED"))
    assert done.status is S.COMPLETED
    assert store.load()[0].status is S.COMPLETED


def test_first_participant_signature_does_not_mark_contract_signed(lifecycle, signatures, store):
    ready_for_signature(lifecycle)
    asyncio.run(lifecycle.send_for_signature(42))
    signatures.agreement_lookups.clear()

    assert asyncio.run(lifecycle.record_signature_event("AGR-1", "AGREEMENT_ACTION_COMPLETED")) is None

    assert signatures.agreement_lookups == ["AGR-1"]
    assert store.load()[0].status is S.OUT_FOR_SIGNATURE


def test_workflow_completion_skips_agreement_lookup(lifecycle, signatures, store):
    ready_for_signature(lifecycle)
    asyncio.run(lifecycle.send_for_signature(42))
    signatures.agreement_lookups.clear()

    done = asyncio.run(lifecycle.record_signature_event("AGR-1", "AGREEMENT_WORKFLOW_COMPLETED"))

    assert done.status is S.COMPLETED
    assert signatures.agreement_lookups == []


def test_signature_events_for_unknown_agreements_are_ignored(lifecycle, store):
    create(lifecycle)
    before = store.path.read_bytes()
    assert asyncio.run(lifecycle.record_signature_event("AGR-404", "AGREEMENT_WORKFLOW_COMPLETED")) is None
    assert asyncio.run(lifecycle.record_signature_event(None, "AGREEMENT_WORKFLOW_COMPLETED")) is None
    assert asyncio.run(lifecycle.record_signature_event("AGR-1", "AGREEMENT_EMAIL_VIEWED")) is None
    assert store.path.read_bytes() == before


def test_collaborator_deadline_surfaces_as_timeout(settings, store, signatures):
    class SlowDocuments:
        async def create_document(self, source_url, participant_name):
            await asyncio.sleep(1)

    fast = dataclasses.replace(settings, collaborator_timeout=0.01)
    lifecycle = ContractLifecycle(fast, store, SlowDocuments(), signatures)
    with pytest.raises(UpstreamServiceError) as excinfo:
        create(lifecycle)
    assert excinfo.value.kind == "timeout"
    assert store.load() == []
