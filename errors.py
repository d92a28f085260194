"""
Error taxonomy. Each error carries the HTTP status it is rendered with by the
exception handler in main.py.
"""
from typing import Any, Dict, List, Optional


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ClientError(StoreError):
    status_code = 400


class ValidationFailed(ClientError):
    pass


class InvalidQuantity(ClientError):
    pass


class OutOfStock(ClientError):
    pass


class InsufficientStock(ClientError):
    pass


class InvalidTransition(ClientError):
    pass


class NotFoundError(StoreError):
    status_code = 404


class AuthError(StoreError):
    status_code = 401


class ForbiddenError(StoreError):
    status_code = 403


class DependencyError(StoreError):
    """A collaborator (image host, payment gateway, ...) failed on a critical path."""
    status_code = 502


class InternalError(StoreError):
    status_code = 500
