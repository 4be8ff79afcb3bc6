from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Urgency = Literal["Low", "Medium", "High"]


class Finding(BaseModel):
    title: str
    action: str


class AnalysisSection(BaseModel):
    score: int = Field(0, ge=0, le=100)
    findings: list[Finding] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class AISummary(BaseModel):
    summary: str
    recommendations: list[str] = Field(default_factory=list)


class AuditMeta(BaseModel):
    url: str
    generated_at: str
    site_id: str


class Audit(BaseModel):
    id: Optional[str] = None
    meta: AuditMeta
    seo: AnalysisSection = Field(default_factory=AnalysisSection)
    performance: AnalysisSection = Field(default_factory=AnalysisSection)
    security: AnalysisSection = Field(default_factory=AnalysisSection)
    ai_summary: AISummary
    raw: dict[str, Any] = Field(default_factory=dict)


class Citation(BaseModel):
    section: str
    excerpt: str


class AnalystAnswer(BaseModel):
    answer: str
    citations: list[Citation] = Field(default_factory=list)
    suggested_actions: list[str] = Field(default_factory=list)
    urgency: Urgency = "Low"


class PdfSummaries(BaseModel):
    seo_meta: str
    performance_summary: str
    security_summary: str


# Request bodies. Fields are optional so that missing values surface as 400s
# from the handlers rather than framework validation errors.


class AuditRequest(BaseModel):
    url: Optional[str] = None


class AnalystRequest(BaseModel):
    identifier: Optional[str] = None
    audit_id: Optional[str] = None
    site_id: Optional[str] = None
    query: Optional[str] = None
    limit: int = Field(1200, ge=50, le=4000)

    def lookup_key(self) -> str:
        return str(self.identifier or self.audit_id or self.site_id or "").strip()


class ReportRequest(BaseModel):
    identifier: Optional[str] = None
    audit_id: Optional[str] = None
    site_id: Optional[str] = None

    def lookup_key(self) -> str:
        return str(self.identifier or self.audit_id or self.site_id or "").strip()
