"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class IngesterStatus(BaseModel):
    """State of the background bridge ingester."""

    state: str
    consecutive_failures: int = Field(..., ge=0)
    last_error: Optional[str] = None
    changed_at: datetime


class HealthResponse(BaseModel):
    status: str = Field(..., description="'ok', or 'degraded' once the ingester gave up.")
    ingester: IngesterStatus
