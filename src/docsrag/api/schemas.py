"""Pydantic models for the docsrag API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1, description="End-user question to answer")

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


class QueryResponse(BaseModel):
    response: str = Field(..., description="Markdown answer")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Query analysis and run details")


class IndexStatsResponse(BaseModel):
    chunks: int = Field(..., ge=0)
    files: int = Field(..., ge=0)
    dimension: Optional[int] = None
    chunker_version: str
    loaded: bool


class RebuildResponse(BaseModel):
    new: int
    changed: int
    removed: int
    unchanged: int
    chunks_inserted: int
    chunks_deleted: int
    chunks_rejected: int
    failed_files: List[str]
    skipped: bool
    full: bool
    duration_seconds: float
    total_chunks: int
