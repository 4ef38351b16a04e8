"""Shared Pydantic response models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "ok"
