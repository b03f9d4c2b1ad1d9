import asyncio
import uuid

from celery import Celery, signals

from .config import Settings
from .log import configure_logging, get_logger
from .services.renderer import render_page_to_pdf
from .storage import ArtifactStorage

settings = Settings.from_env()
logger = get_logger(__name__)

cel = Celery("contract_hub", broker=settings.redis_url, backend=settings.redis_url)


@signals.setup_logging.connect
def _setup_logging(**kwargs):
    configure_logging(settings.log_level, settings.log_json)


def export_to_storage(url: str, token: str, storage: ArtifactStorage, timeout: float) -> str:
    pdf = asyncio.run(render_page_to_pdf(url, token, timeout))
    key = f"exports/{uuid.uuid4().hex}.pdf"
    storage.put_bytes(key, pdf, content_type="application/pdf")
    logger.info("stored export", key=key, url=url)
    return key


@cel.task(name="export_page_to_pdf", queue=settings.worker_queue)
def export_page_to_pdf(url: str, token: str) -> dict:
    key = export_to_storage(url, token, ArtifactStorage(settings), settings.render_timeout)
    return {"pdf": key}
