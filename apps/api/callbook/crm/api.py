from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from callbook.context import get_correlation_id
from callbook.core.auth import get_current_user
from callbook.core.config import get_settings
from callbook.core.database import get_db
from callbook.crm.enums import LeadSource, LeadStatus
from callbook.crm.schemas import (
    CallCreate,
    CallList,
    CallRead,
    LeadCreate,
    LeadDeleteResult,
    LeadDetailRead,
    LeadPage,
    LeadRead,
    LeadSortField,
    LeadUpdate,
)
from callbook.crm.service import call_service, lead_service
from callbook.platform.security.context import AuthContext
from callbook.reporting.schemas import (
    CallTrendPoint,
    DashboardStatsRead,
    OwnerCount,
    SourceCount,
    StatusCount,
    TelecallerStatRead,
)
from callbook.reporting.service import reporting_service

leads_router = APIRouter(prefix="/api/leads", tags=["crm.leads"])
calls_router = APIRouter(prefix="/api/calls", tags=["crm.calls"])


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


@leads_router.get("", response_model=LeadPage)
def list_leads(
    request: Request,
    status_filter: LeadStatus | None = Query(default=None, alias="status"),
    source: LeadSource | None = Query(default=None),
    sort_by: LeadSortField = Query(default="created_at"),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=100),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadPage | JSONResponse:
    try:
        return lead_service.list_leads(
            db,
            user,
            filters={
                "status": status_filter.value if status_filter else None,
                "source": source.value if source else None,
            },
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except HTTPException as exc:
        return _failed(request, exc, "crm_lead_list_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, user, dto)
    except HTTPException as exc:
        return _failed(request, exc, "crm_lead_create_failed")


@leads_router.get("/sources", response_model=list[SourceCount])
def lead_sources(
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[SourceCount]:
    return reporting_service.counts_by(db, user, "source")


@leads_router.get("/statuses", response_model=list[StatusCount])
def lead_statuses(
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[StatusCount]:
    return reporting_service.counts_by(db, user, "status")


@leads_router.get("/owners", response_model=list[OwnerCount])
def lead_owners(
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[OwnerCount]:
    return reporting_service.counts_by(db, user, "owner")


@leads_router.get("/{lead_id}", response_model=LeadDetailRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadDetailRead | JSONResponse:
    try:
        return lead_service.get_lead(db, user, lead_id)
    except HTTPException as exc:
        return _failed(request, exc, "crm_lead_get_failed")


@leads_router.put("/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "crm_lead_update_failed")


@leads_router.delete("/{lead_id}", response_model=LeadDeleteResult)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadDeleteResult | JSONResponse:
    try:
        deleted_calls = lead_service.delete_lead(db, user, lead_id)
    except HTTPException as exc:
        return _failed(request, exc, "crm_lead_delete_failed")
    return LeadDeleteResult(id=lead_id, deleted_calls=deleted_calls)


@calls_router.post("", response_model=CallRead, status_code=status.HTTP_201_CREATED)
def create_call(
    request: Request,
    dto: CallCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> CallRead | JSONResponse:
    try:
        return call_service.record_call(db, user, dto)
    except HTTPException as exc:
        return _failed(request, exc, "crm_call_create_failed")


@calls_router.get("/lead/{lead_id}", response_model=CallList)
def list_calls_for_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> CallList | JSONResponse:
    try:
        return call_service.list_calls_for_lead(db, user, lead_id)
    except HTTPException as exc:
        return _failed(request, exc, "crm_call_list_failed")


@calls_router.get("/connected", response_model=CallList)
def list_connected_calls(
    limit: int | None = Query(default=None, ge=1, le=100),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> CallList:
    resolved = limit if limit is not None else get_settings().default_connected_calls_limit
    return call_service.list_connected_calls(db, user, limit=resolved)


@calls_router.get("/trends", response_model=list[CallTrendPoint])
def call_trends(
    request: Request,
    days: int | None = Query(default=None, ge=1, le=366),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[CallTrendPoint] | JSONResponse:
    try:
        return reporting_service.daily_trend(db, user, days or get_settings().default_trend_days)
    except HTTPException as exc:
        return _failed(request, exc, "crm_call_trends_failed")


@calls_router.get("/stats", response_model=DashboardStatsRead)
def dashboard_stats(
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> DashboardStatsRead:
    return reporting_service.dashboard_stats(db, user)


@calls_router.get("/telecaller-stats", response_model=list[TelecallerStatRead])
def telecaller_stats(
    request: Request,
    days: int | None = Query(default=None, ge=1, le=366),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[TelecallerStatRead] | JSONResponse:
    try:
        return reporting_service.telecaller_stats(db, user, days or get_settings().default_telecaller_stats_days)
    except HTTPException as exc:
        return _failed(request, exc, "crm_telecaller_stats_failed")
