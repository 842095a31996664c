"""Pydantic models for the askdoc API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AnswerResponse(BaseModel):
    text: str = Field(..., description="Answer grounded on the uploaded document")


class ErrorResponse(BaseModel):
    detail: str
    kind: Optional[str] = Field(default=None, description="Failure kind reported by the pipeline")
    correlation_id: str
