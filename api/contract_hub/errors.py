from typing import Any, Dict, Optional


class ContractHubError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class StorageError(ContractHubError):
    """A persisted collection is missing, unreadable or malformed."""

    public_message = "Storage unavailable"

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


class NotFoundError(ContractHubError):
    status_code = 404
    public_message = "Not found"

    def __init__(self, message: str, key: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.key = key


class UpstreamServiceError(ContractHubError):
    """A collaborator (payment processor, signature or document provider, renderer) failed."""

    status_code = 502
    public_message = "Upstream service failed"

    def __init__(self, message: str, service: str = "upstream", kind: str = "error", **kwargs):
        super().__init__(message, **kwargs)
        self.service = service
        self.kind = kind
        if kind == "timeout":
            self.status_code = 504
            self.public_message = "Upstream service timed out"


class DocumentGenerationError(UpstreamServiceError):
    public_message = "Failed to generate document"

    def __init__(self, message: str, service: str = "google_drive", **kwargs):
        super().__init__(message, service=service, **kwargs)


class InvalidTransitionError(ContractHubError):
    status_code = 409
    public_message = "Invalid contract status transition"

    def __init__(self, current: Optional[str], target: str, **kwargs):
        super().__init__(f"cannot move contract from {current} to {target}", **kwargs)
        self.current = current
        self.target = target
