from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_caller, get_db, require_admin
from app.models.service import Service
from app.schemas.services import ServiceIn, ServiceOut, ServiceUpdateIn
from app.services import catalog

router = APIRouter(prefix="/services", tags=["services"])


@router.get("", response_model=List[ServiceOut])
def list_services(
    active: bool = True,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    q = db.query(Service)
    # inactive entries are visible to admins only
    if active or not caller.is_admin:
        q = q.filter(Service.is_active.is_(True))
    return q.order_by(Service.sort_order.asc(), Service.id.asc()).all()


@router.get("/{id_or_slug}", response_model=ServiceOut)
def get_service(
    id_or_slug: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return catalog.get_service(db, id_or_slug)


@router.post("", response_model=ServiceOut, status_code=201)
def create_service(
    data: ServiceIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    return catalog.create_service(db, caller, data.model_dump())


@router.put("/{service_id}", response_model=ServiceOut)
def update_service(
    service_id: int,
    data: ServiceUpdateIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    return catalog.update_service(
        db, caller, service_id, data.model_dump(exclude_unset=True)
    )


@router.delete("/{service_id}", status_code=204)
def delete_service(
    service_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    catalog.delete_service(db, caller, service_id)
    return Response(status_code=204)
