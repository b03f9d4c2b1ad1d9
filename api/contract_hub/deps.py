from fastapi import Request

from .accounts import AccountRegistry
from .lifecycle import ContractLifecycle


def get_lifecycle(request: Request) -> ContractLifecycle:
    return request.app.state.lifecycle


def get_registry(request: Request) -> AccountRegistry:
    return request.app.state.registry


def get_payments(request: Request):
    return request.app.state.payments


def get_documents(request: Request):
    return request.app.state.documents


def get_signatures(request: Request):
    return request.app.state.signatures
