from __future__ import annotations

from pydantic import BaseModel


class CertificatePublic(BaseModel):
    id: str
    type: str
    certificate_number: str
    issued_at: str
    module_id: str
    module_title: str | None = None
    module_order: int | None = None


class EligibleCertificate(BaseModel):
    type: str
    required_modules: int


class CertificatesResponse(BaseModel):
    certificates: list[CertificatePublic]
    eligible_certificates: list[EligibleCertificate]
    completed_modules: int


class CertificateIssueRequest(BaseModel):
    type: str
