from __future__ import annotations

import logging
import time

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, InvalidInput, NotEnoughCompletedModules
from app.models.certificate import Certificate, CertificateType
from app.models.module import Module
from app.models.progress import ModuleProgress
from app.models.user import User

log = logging.getLogger(__name__)

# Completed modules needed per certificate level.
THRESHOLDS: dict[CertificateType, int] = {
    CertificateType.bronze: 3,
    CertificateType.silver: 6,
    CertificateType.gold: 9,
}


# Consecutive milliseconds tried before giving up on a free number.
_NUMBER_ATTEMPTS = 5


def certificate_number(user: User, cert_type: CertificateType, *, epoch_ms: int | None = None) -> str:
    if epoch_ms is None:
        epoch_ms = int(time.time() * 1000)
    return f"{settings.certificate_number_prefix}-{cert_type.value}-{epoch_ms}-{str(user.id)[-4:]}"


class CertificateService:
    def __init__(self, db: Session):
        self.db = db

    def completed_module_count(self, user: User) -> int:
        return int(
            self.db.scalar(
                select(func.count(ModuleProgress.id)).where(
                    ModuleProgress.user_id == user.id,
                    ModuleProgress.is_completed == True,  # noqa: E712
                )
            )
            or 0
        )

    def _held_types(self, user: User) -> set[CertificateType]:
        return set(self.db.scalars(select(Certificate.type).where(Certificate.user_id == user.id)).all())

    def _free_number(self, user: User, t: CertificateType) -> str:
        epoch_ms = int(time.time() * 1000)
        for offset in range(_NUMBER_ATTEMPTS):
            number = certificate_number(user, t, epoch_ms=epoch_ms + offset)
            if self.db.scalar(select(Certificate.id).where(Certificate.certificate_number == number)) is None:
                return number
        raise Conflict("certificate_number_conflict", "no free certificate number right now. Try again.")

    def list_certificates(self, user: User) -> list[tuple[Certificate, Module | None]]:
        rows = self.db.execute(
            select(Certificate, Module)
            .outerjoin(Module, Module.id == Certificate.module_id)
            .where(Certificate.user_id == user.id)
            .order_by(Certificate.issued_at.desc())
        ).all()
        return [(c, m) for c, m in rows]

    def list_eligible(self, user: User) -> list[dict]:
        completed = self.completed_module_count(user)
        held = self._held_types(user)
        return [
            {"type": t.value, "required_modules": required}
            for t, required in THRESHOLDS.items()
            if completed >= required and t not in held
        ]

    def issue(self, user: User, cert_type) -> Certificate:
        try:
            t = CertificateType(str(cert_type or "").strip().upper())
        except ValueError as e:
            raise InvalidInput("invalid_certificate_type", "certificate type must be BRONZE, SILVER or GOLD") from e

        required = THRESHOLDS[t]
        completed = self.completed_module_count(user)
        if completed < required:
            raise NotEnoughCompletedModules(required=required, completed=completed)

        if t in self._held_types(user):
            raise Conflict("certificate_already_obtained", "this certificate was already issued")

        last_module_id = self.db.scalar(
            select(ModuleProgress.module_id)
            .where(ModuleProgress.user_id == user.id, ModuleProgress.is_completed == True)  # noqa: E712
            .order_by(ModuleProgress.completed_at.desc())
            .limit(1)
        )

        cert = Certificate(
            user_id=user.id,
            module_id=last_module_id,
            type=t,
            certificate_number=self._free_number(user, t),
        )
        self.db.add(cert)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            # Either a concurrent request issued the same tier or took the same number.
            if t in self._held_types(user):
                raise Conflict("certificate_already_obtained", "this certificate was already issued") from e
            raise Conflict("certificate_number_conflict", "the certificate number was taken concurrently. Try again.") from e

        log.info("certificate issued user_id=%s type=%s number=%s", user.id, t.value, cert.certificate_number)
        return cert
