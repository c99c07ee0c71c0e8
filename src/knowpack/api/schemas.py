"""Pydantic models for the knowpack API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from knowpack.config import get_settings


class ContextRequest(BaseModel):
    pack: str = Field(..., min_length=1, description="Pack (namespace) to assemble from")
    topic_hint: Optional[str] = Field(default=None, description="Free-text topic used for matching")
    tags: List[str] = Field(default_factory=list, description="Optional tag filter")
    budget_bytes: Optional[int] = Field(
        default=None,
        ge=1,
        le=get_settings().max_budget_bytes,
        description="Hard ceiling on the assembled body size in bytes",
    )
    now: Optional[datetime] = Field(
        default=None,
        description="Reference time for freshness and staleness; defaults to the server clock",
    )


class IncludedDocumentModel(BaseModel):
    document_id: str
    pack: str
    topic: str
    score: float
    stale: bool
    size_bytes: int = Field(..., ge=0)
    truncated: bool = False


class ExclusionModel(BaseModel):
    document_id: str
    reason: Literal[
        "low-score",
        "duplicate",
        "stale-deprioritized-and-unselected",
        "over-budget",
        "scan-limit",
    ]
    score: float


class PartialDataWarningModel(BaseModel):
    document_id: str
    fields: List[str]
    message: str


class ContextResponse(BaseModel):
    body: str
    separator: str
    total_bytes: int = Field(..., ge=0)
    reason: Optional[str] = Field(default=None, description="Set when no document was included")
    truncated: bool = False
    documents: List[IncludedDocumentModel]
    excluded: List[ExclusionModel]
    warnings: List[PartialDataWarningModel]


class PackSummaryModel(BaseModel):
    name: str
    document_count: int = Field(..., ge=0)
    topics: List[str]


class PackListResponse(BaseModel):
    packs: List[PackSummaryModel]


class DocumentResponse(BaseModel):
    document_id: str
    pack: str
    topic: str
    slug: Optional[str] = None
    confidence: Optional[int] = None
    sources_checked: Optional[int] = None
    last_updated: Optional[datetime] = None
    last_verified: Optional[datetime] = None
    tags: List[str]
    source_path: Optional[str] = None
    size_bytes: int = Field(..., ge=0)
    body: str
