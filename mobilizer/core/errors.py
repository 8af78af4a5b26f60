"""Typed failures raised by the service layer.

Routes never turn these into empty results; exception handlers in
``mobilizer.main`` map them onto HTTP status codes.
"""

from typing import Any

from pydantic import BaseModel


class MobilizerError(Exception):
    """Base class for domain errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(MobilizerError):
    """A referenced user or movement does not exist."""

    status_code = 404

    def __init__(self, resource: str, identifier: Any = None) -> None:
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} not found: {identifier}"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class ForbiddenError(MobilizerError):
    """The caller lacks visibility or scopes for the request."""

    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class ValidationSkipped(BaseModel):
    """A batch record that could not be parsed. Reported, never raised."""

    index: int
    reason: str
    raw: str | None = None
