from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import get_optional_user, get_verified_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.module import CatalogResponse, ModuleState
from app.services.modules import ModuleService

router = APIRouter(prefix="/modules", tags=["modules"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


@router.get("", response_model=CatalogResponse)
def list_modules(db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    # Anonymous visitors see the catalog with everything locked.
    return ModuleService(db).catalog(user)


@router.get("/{module_id}", response_model=ModuleState)
def get_module(module_id: str, db: Session = Depends(get_db), user: User = Depends(get_verified_user)):
    mid = _uuid(module_id, field="module_id")
    return ModuleService(db).module_detail(user, mid)
