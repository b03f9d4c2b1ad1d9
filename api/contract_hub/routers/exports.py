from fastapi import APIRouter

from ..log import get_logger
from ..schemas import ExportRequest

router = APIRouter()
logger = get_logger(__name__)


@router.post("/export-to-pdf", status_code=202)
def export_to_pdf(payload: ExportRequest):
    from ..worker import export_page_to_pdf

    job = export_page_to_pdf.delay(payload.url, payload.token)
    logger.info("queued pdf export", url=payload.url, job_id=job.id)
    return {"queued": True, "jobId": job.id}
