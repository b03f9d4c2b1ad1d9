from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .accounts import AccountRegistry
from .config import Settings
from .errors import ContractHubError
from .lifecycle import ContractLifecycle
from .log import configure_logging, get_logger
from .models import Account, Contract, account_key, contract_key
from .routers import adobe, contracts, exports, stripe
from .services.adobe_sign import SignatureProvider
from .services.google_drive import DocumentProvider
from .services.payments import PaymentProcessor
from .store import JsonCollectionStore

logger = get_logger(__name__)


def _install_error_handlers(app: FastAPI):
    @app.exception_handler(ContractHubError)
    async def handle_service_error(request: Request, exc: ContractHubError):
        logger.error(
            "request failed",
            path=request.url.path,
            error_type=exc.__class__.__name__,
            error=str(exc),
            **exc.context,
        )
        # client errors carry their message, server errors stay opaque
        message = str(exc) if exc.status_code < 500 else exc.public_message
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


def create_app(
    settings: Optional[Settings] = None,
    *,
    documents=None,
    signatures=None,
    payments=None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    client = http_client or httpx.AsyncClient(timeout=settings.collaborator_timeout)
    documents = documents or DocumentProvider(settings, client)
    signatures = signatures or SignatureProvider(settings, client)
    payments = payments or PaymentProcessor(settings)

    contract_store = JsonCollectionStore(settings.contracts_file, Contract, contract_key)
    account_store = JsonCollectionStore(settings.accounts_file, Account, account_key)

    registry = AccountRegistry(settings, account_store, payments)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        contract_store.ensure_exists()
        registry.ensure_brand()
        logger.info("contract hub started", data_dir=str(settings.data_dir))
        yield
        await client.aclose()

    app = FastAPI(title="Contract Hub", lifespan=lifespan)
    app.state.settings = settings
    app.state.documents = documents
    app.state.signatures = signatures
    app.state.payments = payments
    app.state.lifecycle = ContractLifecycle(settings, contract_store, documents, signatures)
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    app.include_router(contracts.router, tags=["contracts"])
    app.include_router(adobe.router, tags=["signatures"])
    app.include_router(exports.router, tags=["exports"])
    app.include_router(stripe.router, prefix="/stripe", tags=["payments"])

    @app.get("/")
    def root():
        return {"ok": True, "service": "contract-hub"}

    return app


app = create_app()
