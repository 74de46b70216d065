"""
Envelopes shared by every endpoint.

Success bodies carry ``success: true``; failures are rendered from
AppError.to_dict() and always carry ``success: false`` plus a machine
readable ``code``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel

HealthStatus = Literal["healthy", "degraded", "unhealthy"]


class FieldErrorDetail(BaseModel):
    """One entry of ``details`` on a request-validation failure."""

    field: Optional[str] = None
    message: str


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str
    code: str
    field: Optional[str] = None
    # list[FieldErrorDetail] for validation_error, a dict (e.g. attempts_left) otherwise
    details: Optional[Any] = None
    retryable: Optional[bool] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: HealthStatus
    checks: dict[str, str]
