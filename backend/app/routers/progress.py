from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import get_verified_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.progress import ModuleProgressResponse
from app.services.modules import ModuleService

router = APIRouter(prefix="/progress", tags=["progress"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


@router.get("/modules/{module_id}", response_model=ModuleProgressResponse)
def module_progress(module_id: str, db: Session = Depends(get_db), user: User = Depends(get_verified_user)):
    mid = _uuid(module_id, field="module_id")
    return ModuleService(db).module_progress(user, mid)
