from fastapi import APIRouter, Depends, Query, Response

from ..deps import get_documents, get_lifecycle
from ..lifecycle import ContractLifecycle
from ..schemas import ContractUpdate, ContractUpload, DocumentRef, ParticipantRef

router = APIRouter()


@router.get("/contracts")
async def get_contract(
    participant_id: int = Query(..., alias="participantId"),
    lifecycle: ContractLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_contract_with_agreement(participant_id)


@router.post("/upload-contract")
async def upload_contract(payload: ContractUpload, lifecycle: ContractLifecycle = Depends(get_lifecycle)):
    contract = await lifecycle.create_contract_document(
        payload.document_url,
        payload.participant_name,
        payload.participant_id,
        payload.campaign_id,
    )
    return {"message": "Google Doc created successfully", "docUrl": contract.doc_url}


@router.post("/update-contract")
async def update_contract(payload: ContractUpdate, lifecycle: ContractLifecycle = Depends(get_lifecycle)):
    fields = {"agreement_id": payload.agreement_id} if payload.agreement_id else {}
    await lifecycle.update_status(payload.participant_id, payload.status, **fields)
    return Response(status_code=200)


@router.post("/upload-contract-for-signature")
async def upload_contract_for_signature(
    payload: ParticipantRef, lifecycle: ContractLifecycle = Depends(get_lifecycle)
):
    return await lifecycle.send_for_signature(payload.participant_id)


# operator utility: strip the "mark as ready" placeholder from a doc by hand
@router.post("/remove-anchor-tag")
async def remove_anchor_tag(payload: DocumentRef, documents=Depends(get_documents)):
    return {"removed": await documents.remove_anchor_tag(payload.doc_id)}
