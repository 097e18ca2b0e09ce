"""
Error taxonomy shared by routes, the authorizer and the store adapters.

Every error carries a message that is safe to return to the client as
`{"error": message}`.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(ServiceError):
    """Missing or invalid bearer credential."""

    status_code = 401


class PermissionDenied(ServiceError):
    """Role or ownership check failed."""

    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class InvalidArgument(ServiceError):
    """Malformed or missing field, or an invalid enum value."""

    status_code = 400


class Upstream(ServiceError):
    """The datastore, push channel or identity provider call failed."""

    status_code = 502
