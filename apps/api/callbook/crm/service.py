from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from opentelemetry import trace
from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbook import audit, events
from callbook.crm.enums import CallStatus, LeadStatus
from callbook.crm.models import Call, Lead
from callbook.crm.repositories import CallRepository, LeadRepository
from callbook.crm.schemas import (
    CallCreate,
    CallList,
    CallRead,
    LeadCreate,
    LeadDetailRead,
    LeadPage,
    LeadRead,
    LeadRef,
    LeadSortField,
    LeadUpdate,
    Pagination,
    UserRef,
)
from callbook.crm.state_machine import CallOutcome, Connected, next_status
from callbook.metrics import (
    observe_call_recorded,
    observe_lead_status_transition,
    observe_lead_status_update_failure,
)
from callbook.platform.security.context import AuthContext
from callbook.platform.security.errors import AuthorizationError


logger = logging.getLogger("callbook.crm")
tracer = trace.get_tracer("callbook.crm")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _forbidden(exc: AuthorizationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


def to_lead_read(lead: Lead) -> LeadRead:
    return LeadRead.model_validate(
        {
            "id": lead.id,
            "name": lead.name,
            "company": lead.company,
            "phone": lead.phone,
            "email": lead.email,
            "address": lead.address,
            "source": lead.source,
            "status": lead.status,
            "notes": lead.notes,
            "created_by": UserRef.model_validate(lead.creator),
            "last_modified_by": UserRef.model_validate(lead.modifier),
            "created_at": lead.created_at,
            "updated_at": lead.updated_at,
        }
    )


def to_call_read(call: Call) -> CallRead:
    return CallRead.model_validate(
        {
            "id": call.id,
            "lead": LeadRef.model_validate(call.lead),
            "user": UserRef.model_validate(call.user),
            "status": call.status,
            "duration": call.duration,
            "connected_response": call.connected_response,
            "not_connected_reason": call.not_connected_reason,
            "notes": call.notes,
            "created_at": call.created_at,
        }
    )


@dataclass(slots=True)
class LeadService:
    lead_repository: LeadRepository = LeadRepository()

    entity_type = "crm.lead"
    sortable_columns = {
        "created_at": Lead.created_at,
        "updated_at": Lead.updated_at,
        "name": Lead.name,
        "company": Lead.company,
        "status": Lead.status,
        "source": Lead.source,
    }

    def create_lead(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadRead:
        payload = dto.model_dump(mode="json")
        lead = Lead(**payload, created_by=ctx.user_id, last_modified_by=ctx.user_id)
        session.add(lead)
        session.commit()
        session.refresh(lead)

        lead_read = to_lead_read(lead)
        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="create",
            before=None,
            after=lead_read.model_dump(mode="json"),
        )
        logger.info("lead.created", extra={"lead_id": str(lead.id), "user_id": str(ctx.user_id)})
        return lead_read

    def list_leads(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        filters: dict[str, Any],
        sort_by: LeadSortField = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 100,
    ) -> LeadPage:
        sort_column = self.sortable_columns.get(sort_by)
        if sort_column is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"invalid sort field: {sort_by}")

        stmt: Select[tuple[Lead]] = select(Lead)
        if filters.get("status"):
            stmt = stmt.where(Lead.status == filters["status"])
        if filters.get("source"):
            stmt = stmt.where(Lead.source == filters["source"])
        stmt = self.lead_repository.apply_scope_query(stmt, ctx)

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()
        leads = session.scalars(
            stmt.order_by(ordering, Lead.id.asc()).offset((page - 1) * limit).limit(limit)
        ).all()

        return LeadPage(
            count=len(leads),
            pagination=Pagination(total=total, pages=math.ceil(total / limit), page=page, limit=limit),
            data=[to_lead_read(lead) for lead in leads],
        )

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadDetailRead:
        lead = self._get_or_404(session, lead_id)
        try:
            self.lead_repository.validate_write_security(ctx, lead.created_by, action="read")
        except AuthorizationError as exc:
            raise _forbidden(exc)

        lead_read = to_lead_read(lead)
        return LeadDetailRead(**lead_read.model_dump(), calls=[to_call_read(call) for call in lead.calls])

    def update_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = self._get_or_404(session, lead_id)
        try:
            self.lead_repository.validate_write_security(ctx, lead.created_by, action="update")
        except AuthorizationError as exc:
            raise _forbidden(exc)

        before = to_lead_read(lead).model_dump(mode="json")
        for field_name, value in dto.model_dump(mode="json", exclude_unset=True).items():
            setattr(lead, field_name, value)
        lead.last_modified_by = ctx.user_id
        lead.updated_at = utcnow()
        session.commit()
        session.refresh(lead)

        updated = to_lead_read(lead)
        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="update",
            before=before,
            after=updated.model_dump(mode="json"),
        )
        if before["status"] != updated.status.value:
            logger.info(
                "lead.status_overridden",
                extra={"lead_id": str(lead.id), "from_status": before["status"], "to_status": updated.status.value},
            )
        return updated

    def delete_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> int:
        lead = self._get_or_404(session, lead_id)
        try:
            self.lead_repository.validate_write_security(ctx, lead.created_by, action="delete")
        except AuthorizationError as exc:
            raise _forbidden(exc)

        before = to_lead_read(lead).model_dump(mode="json")
        deleted_calls = len(lead.calls)
        session.delete(lead)
        session.commit()

        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="delete",
            before=before,
            after={"deleted_calls": deleted_calls},
        )
        logger.info("lead.deleted", extra={"lead_id": str(lead_id), "user_id": str(ctx.user_id)})
        return deleted_calls

    @staticmethod
    def _get_or_404(session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        return lead


@dataclass(slots=True)
class CallService:
    lead_repository: LeadRepository = LeadRepository()
    call_repository: CallRepository = CallRepository()

    entity_type = "crm.call"

    def record_call(self, session: Session, ctx: AuthContext, dto: CallCreate) -> CallRead:
        """Persist a call, then advance the lead it was placed against.

        The call is committed before the lead is touched. A failure while
        saving the lead status is logged and counted but does not undo the
        call; the caller still receives the recorded call.
        """
        with tracer.start_as_current_span("crm.record_call") as span:
            lead = session.get(Lead, dto.lead_id)
            if lead is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
            try:
                self.lead_repository.validate_write_security(ctx, lead.created_by, action="log_call")
            except AuthorizationError as exc:
                raise _forbidden(exc)

            outcome = dto.outcome()
            call = Call(
                lead_id=lead.id,
                user_id=ctx.user_id,
                status=outcome.status.value,
                duration=dto.duration,
                connected_response=outcome.response.value if isinstance(outcome, Connected) else None,
                not_connected_reason=None if isinstance(outcome, Connected) else outcome.reason.value,
                notes=dto.notes,
            )
            session.add(call)
            session.commit()

            observe_call_recorded(call.status)
            span.set_attribute("call.id", str(call.id))
            span.set_attribute("call.status", call.status)
            audit.record(
                ctx,
                entity_type=self.entity_type,
                entity_id=str(call.id),
                action="create",
                before=None,
                after={"lead_id": str(lead.id), "status": call.status, "duration": call.duration},
            )
            events.publish(
                {
                    "event_type": "crm.call.recorded",
                    "actor_user_id": str(ctx.user_id),
                    "payload": {"call_id": str(call.id), "lead_id": str(lead.id), "status": call.status},
                }
            )

            try:
                self._advance_lead(session, ctx, lead, outcome)
            except SQLAlchemyError as exc:
                session.rollback()
                observe_lead_status_update_failure()
                span.set_attribute("lead.status_update_failed", True)
                logger.exception(
                    "lead_status_update_failed",
                    extra={"lead_id": str(dto.lead_id), "call_id": str(call.id), "error": str(exc)},
                )

            return to_call_read(call)

    def list_calls_for_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> CallList:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        try:
            self.lead_repository.validate_write_security(ctx, lead.created_by, action="read")
        except AuthorizationError as exc:
            raise _forbidden(exc)

        calls = session.scalars(
            select(Call).where(Call.lead_id == lead.id).order_by(Call.created_at.desc(), Call.id.asc())
        ).all()
        return CallList(count=len(calls), data=[to_call_read(call) for call in calls])

    def list_connected_calls(self, session: Session, ctx: AuthContext, *, limit: int) -> CallList:
        stmt: Select[tuple[Call]] = select(Call).where(Call.status == CallStatus.CONNECTED.value)
        stmt = self.call_repository.apply_scope_query(stmt, ctx)
        calls = session.scalars(stmt.order_by(Call.created_at.desc(), Call.id.asc()).limit(limit)).all()
        return CallList(count=len(calls), data=[to_call_read(call) for call in calls])

    def _advance_lead(self, session: Session, ctx: AuthContext, lead: Lead, outcome: CallOutcome) -> LeadStatus:
        current = LeadStatus(lead.status)
        target = next_status(current, outcome)
        if target is current:
            return current

        lead.status = target.value
        lead.last_modified_by = ctx.user_id
        lead.updated_at = utcnow()
        session.commit()

        observe_lead_status_transition(current.value, target.value)
        logger.info(
            "lead.status_changed",
            extra={"lead_id": str(lead.id), "from_status": current.value, "to_status": target.value},
        )
        events.publish(
            {
                "event_type": "crm.lead.status_changed",
                "actor_user_id": str(ctx.user_id),
                "payload": {"lead_id": str(lead.id), "from_status": current.value, "to_status": target.value},
            }
        )
        return target


lead_service = LeadService()
call_service = CallService()
