"""Helpers shared by the routers."""

from __future__ import annotations

from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

from ..billing.errors import BillingError


def build_correlation_id(request: Request) -> str:
    existing = request.headers.get("X-Correlation-ID")
    if existing:
        return existing
    return f"billing-{uuid4()}"


def error_response(exc: BillingError, **extra) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(**extra))
