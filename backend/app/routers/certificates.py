from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.rate_limit import rate_limit
from app.core.security import get_verified_user
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.certificate import Certificate
from app.models.module import Module
from app.models.user import User
from app.schemas.certificate import CertificateIssueRequest, CertificatePublic, CertificatesResponse
from app.services.certificates import CertificateService

router = APIRouter(prefix="/certificates", tags=["certificates"])


def _public(cert: Certificate, module: Module | None) -> CertificatePublic:
    return CertificatePublic(
        id=str(cert.id),
        type=cert.type.value,
        certificate_number=cert.certificate_number,
        issued_at=cert.issued_at.isoformat(),
        module_id=str(cert.module_id),
        module_title=module.title if module is not None else None,
        module_order=int(module.order) if module is not None else None,
    )


@router.get("", response_model=CertificatesResponse)
def list_certificates(db: Session = Depends(get_db), user: User = Depends(get_verified_user)):
    service = CertificateService(db)
    return {
        "certificates": [_public(c, m) for c, m in service.list_certificates(user)],
        "eligible_certificates": service.list_eligible(user),
        "completed_modules": service.completed_module_count(user),
    }


@router.post("", response_model=CertificatePublic)
def issue_certificate(
    request: Request,
    body: CertificateIssueRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_verified_user),
    _: object = rate_limit(key_prefix="certificate_issue", limit=10, window_seconds=60),
):
    cert = CertificateService(db).issue(user, body.type)
    audit_log(
        db=db,
        request=request,
        event_type="certificate_issued",
        actor_user_id=user.id,
        target_user_id=user.id,
        meta={"type": cert.type.value, "certificate_number": cert.certificate_number},
    )
    out = _public(cert, db.get(Module, cert.module_id))
    db.commit()
    return out
