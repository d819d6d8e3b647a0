"""Narrow views of the report and user collaborators."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ...extensions import db
from ...models.report import Report
from ...models.user import User


@dataclass(frozen=True)
class ReportRef:
    id: int
    kind: str
    owner_id: Optional[int]
    status: str


@dataclass(frozen=True)
class UserRef:
    id: int
    role: str = "student"


class ReportLookup(Protocol):
    def get_report(self, report_id: int) -> Optional[ReportRef]: ...


class UserLookup(Protocol):
    def get_user(self, user_id: int) -> Optional[UserRef]: ...


class SqlReportLookup:
    def get_report(self, report_id: int) -> Optional[ReportRef]:
        r = db.session.get(Report, int(report_id))
        if r is None:
            return None
        return ReportRef(
            id=int(r.id),
            kind=str(r.kind),
            owner_id=int(r.owner_user_id) if r.owner_user_id is not None else None,
            status=str(r.status),
        )


class SqlUserLookup:
    def get_user(self, user_id: int) -> Optional[UserRef]:
        u = db.session.get(User, int(user_id))
        if u is None:
            return None
        return UserRef(id=int(u.id), role=str(u.role or "student"))
