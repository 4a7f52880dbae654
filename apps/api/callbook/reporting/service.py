from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import Select, case, func, select
from sqlalchemy.orm import Session

from callbook.core.config import get_settings
from callbook.crm.enums import CallStatus
from callbook.crm.models import Call, Lead
from callbook.crm.repositories import CallRepository, LeadRepository
from callbook.platform.security.context import TELECALLER_ROLE, AuthContext
from callbook.platform.security.errors import AuthorizationError
from callbook.platform.security.policy import require_admin
from callbook.reporting.schemas import (
    CallTrendPoint,
    DashboardStatsRead,
    OwnerCount,
    SourceCount,
    StatusCount,
    TelecallerStatRead,
    UserCallStatsRead,
)
from callbook.users.models import User


LeadDimension = Literal["source", "status", "owner"]

_CONNECTED = CallStatus.CONNECTED.value


def format_connection_rate(connected: int, total: int, *, places: int = 2) -> str:
    if not total:
        return "0%"
    rate = Decimal(connected * 100) / Decimal(total)
    quantum = Decimal(1).scaleb(-places)
    return f"{rate.quantize(quantum, rounding=ROUND_HALF_UP)}%"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class ReportingService:
    lead_repository: LeadRepository = LeadRepository()
    call_repository: CallRepository = CallRepository()

    def counts_by(self, session: Session, ctx: AuthContext, dimension: LeadDimension) -> list[Any]:
        """Lead counts grouped by one dimension, largest group first."""
        if dimension == "owner":
            return self._owner_counts(session, ctx)

        column = Lead.source if dimension == "source" else Lead.status
        count_col = func.count(Lead.id).label("count")
        stmt: Select[Any] = select(column, count_col).group_by(column)
        stmt = self.lead_repository.apply_scope_query(stmt, ctx)
        rows = session.execute(stmt.order_by(count_col.desc(), column.asc())).all()

        if dimension == "source":
            return [SourceCount(source=value, count=count) for value, count in rows]
        return [StatusCount(status=value, count=count) for value, count in rows]

    def daily_trend(
        self,
        session: Session,
        ctx: AuthContext,
        days: int,
        *,
        now: datetime | None = None,
    ) -> list[CallTrendPoint]:
        """Per-day call counts for the trailing ``days`` calendar days, today included.

        Days are cut in the configured report timezone. Days without calls are
        emitted with zero counts so the series always has ``days`` points.
        """
        if days < 1:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="days must be at least 1")

        tz = ZoneInfo(get_settings().report_timezone)
        today = (now or datetime.now(timezone.utc)).astimezone(tz).date()
        first_day = today - timedelta(days=days - 1)
        window_start = datetime.combine(first_day, time.min, tzinfo=tz).astimezone(timezone.utc)
        window_end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)

        stmt: Select[Any] = select(Call.created_at, Call.status).where(
            Call.created_at >= window_start,
            Call.created_at < window_end,
        )
        stmt = self.call_repository.apply_scope_query(stmt, ctx)

        totals: dict[date, list[int]] = {}
        for created_at, call_status in session.execute(stmt):
            bucket = totals.setdefault(_as_utc(created_at).astimezone(tz).date(), [0, 0])
            bucket[0] += 1
            if call_status == _CONNECTED:
                bucket[1] += 1

        points: list[CallTrendPoint] = []
        for offset in range(days):
            day = first_day + timedelta(days=offset)
            total, connected = totals.get(day, (0, 0))
            points.append(CallTrendPoint(date=day, total_calls=total, connected_calls=connected))
        return points

    def dashboard_stats(self, session: Session, ctx: AuthContext) -> DashboardStatsRead:
        lead_stmt = self.lead_repository.apply_scope_query(select(func.count(Lead.id)), ctx)
        call_stmt = self.call_repository.apply_scope_query(
            select(
                func.count(Call.id),
                func.coalesce(func.sum(case((Call.status == _CONNECTED, 1), else_=0)), 0),
            ),
            ctx,
        )

        total_leads = session.scalar(lead_stmt) or 0
        total_calls, connected_calls = session.execute(call_stmt).one()
        total_telecallers = session.scalar(select(func.count(User.id)).where(User.role == TELECALLER_ROLE)) or 0

        return DashboardStatsRead(
            total_leads=total_leads,
            total_calls=total_calls or 0,
            connected_calls=int(connected_calls or 0),
            connection_rate=format_connection_rate(int(connected_calls or 0), total_calls or 0),
            total_telecallers=total_telecallers,
        )

    def telecaller_stats(
        self,
        session: Session,
        ctx: AuthContext,
        days: int,
        *,
        now: datetime | None = None,
    ) -> list[TelecallerStatRead]:
        try:
            require_admin(ctx, resource="telecaller_stats", action="read")
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        if days < 1:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="days must be at least 1")

        since = (now or datetime.now(timezone.utc)).astimezone(timezone.utc) - timedelta(days=days)
        total_col = func.count(Call.id).label("total_calls")
        connected_col = func.coalesce(func.sum(case((Call.status == _CONNECTED, 1), else_=0)), 0).label("connected")
        stmt = (
            select(User.id, User.name, User.username, total_col, connected_col)
            .select_from(Call)
            .join(User, Call.user_id == User.id)
            .where(Call.created_at >= since)
            .group_by(User.id, User.name, User.username)
            .order_by(total_col.desc(), User.username.asc())
        )
        return [
            TelecallerStatRead(
                user_id=user_id,
                name=name,
                username=username,
                total_calls=total_calls,
                connected=int(connected),
            )
            for user_id, name, username, total_calls, connected in session.execute(stmt)
        ]

    def user_call_stats(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        now: datetime | None = None,
    ) -> UserCallStatsRead:
        settings = get_settings()
        week_start = (now or datetime.now(timezone.utc)).astimezone(timezone.utc) - timedelta(
            days=settings.user_stats_window_days
        )
        total_calls, connected_calls, recent_calls = session.execute(
            select(
                func.count(Call.id),
                func.coalesce(func.sum(case((Call.status == _CONNECTED, 1), else_=0)), 0),
                func.coalesce(func.sum(case((Call.created_at >= week_start, 1), else_=0)), 0),
            ).where(Call.user_id == user_id)
        ).one()

        return UserCallStatsRead(
            total_calls=total_calls or 0,
            connected_calls=int(connected_calls or 0),
            connection_rate=format_connection_rate(int(connected_calls or 0), total_calls or 0, places=0),
            calls_this_week=int(recent_calls or 0),
        )

    def _owner_counts(self, session: Session, ctx: AuthContext) -> list[OwnerCount]:
        count_col = func.count(Lead.id).label("count")
        stmt: Select[Any] = (
            select(User.id, User.name, User.username, count_col)
            .select_from(Lead)
            .join(User, Lead.created_by == User.id)
            .group_by(User.id, User.name, User.username)
        )
        stmt = self.lead_repository.apply_scope_query(stmt, ctx)
        rows = session.execute(stmt.order_by(count_col.desc(), User.username.asc())).all()
        return [
            OwnerCount(user_id=user_id, name=name, username=username, count=count)
            for user_id, name, username, count in rows
        ]


reporting_service = ReportingService()
