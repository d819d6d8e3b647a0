"""Persistence for match records and the rejection log.

No business rules live here: lookups, inserts, the unit-of-work boundary
(commit/rollback) and the per-key locks every mutating operation holds.
"""
from __future__ import annotations

from contextlib import ExitStack, contextmanager
from threading import Lock, RLock, local
from typing import Hashable, Iterator

from sqlalchemy import or_
from sqlalchemy.exc import InterfaceError, OperationalError

from ...errors import TransientError
from ...extensions import db
from ...logging_config import get_logger
from ...models.enums import MATCH_ACTIVE_STATUSES
from ...models.match import Match
from ...models.rejection import RejectionRecord

logger = get_logger(__name__)

# Process-local lock registry: key -> [lock, holders + waiters]. Entries are
# dropped once nobody holds or waits for them. Row locks (SELECT ... FOR
# UPDATE) cover other processes where the database supports them.
_locks: dict[Hashable, list] = {}
_registry_lock = Lock()

# Locks to release when the current thread's unit of work ends
_held = local()


def _acquire(key: Hashable) -> None:
    with _registry_lock:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = [RLock(), 0]
        entry[1] += 1
    entry[0].acquire()


def _release(key: Hashable) -> None:
    with _registry_lock:
        entry = _locks[key]
        entry[0].release()
        entry[1] -= 1
        if entry[1] == 0:
            del _locks[key]


class MatchRecordStore:
    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    # Locks

    @contextmanager
    def locked(self, *keys: Hashable) -> Iterator[None]:
        """Hold the process-local locks for ``keys`` (acquired in a stable order)."""
        ordered = sorted(set(keys), key=repr)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                _acquire(key)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                _release(key)

    def hold_until_commit(self, *keys: Hashable) -> None:
        """Acquire ``keys`` now and keep them until the open unit of work commits or rolls back."""
        stack = getattr(_held, "stack", None)
        if stack is None:
            raise RuntimeError("hold_until_commit() needs an open unit_of_work()")
        stack.enter_context(self.locked(*keys))

    @staticmethod
    def match_key(match_id: int) -> tuple:
        return ("match", int(match_id))

    @staticmethod
    def report_key(report_id: int) -> tuple:
        return ("report", int(report_id))

    @staticmethod
    def user_key(user_id: int) -> tuple:
        return ("user", int(user_id))

    # Reads

    def load(self, match_id: int, for_update: bool = False) -> Match | None:
        q = self.session.query(Match).filter(Match.id == int(match_id))
        if for_update:
            q = q.with_for_update()
        return q.populate_existing().first() if for_update else q.first()

    def load_by_report_id(self, report_id: int, active_only: bool = False) -> list[Match]:
        q = self.session.query(Match).filter(
            or_(Match.source_report_id == int(report_id), Match.target_report_id == int(report_id))
        )
        if active_only:
            q = q.filter(Match.status.in_(sorted(MATCH_ACTIVE_STATUSES)))
        return q.order_by(Match.created_at.desc(), Match.id.desc()).all()

    def list(self, report_id: int | None = None, status: str | None = None, limit: int = 200) -> list[Match]:
        q = self.session.query(Match)
        if report_id is not None:
            q = q.filter(or_(Match.source_report_id == report_id, Match.target_report_id == report_id))
        if status:
            q = q.filter(Match.status == status)
        return q.order_by(Match.created_at.desc(), Match.id.desc()).limit(max(1, min(500, limit))).all()

    def active_created_before(self, cutoff) -> list[int]:
        rows = (
            self.session.query(Match.id)
            .filter(Match.status.in_(sorted(MATCH_ACTIVE_STATUSES)), Match.created_at <= cutoff)
            .order_by(Match.id)
            .all()
        )
        return [int(r[0]) for r in rows]

    def active_matches(self) -> list[Match]:
        return (
            self.session.query(Match)
            .filter(Match.status.in_(sorted(MATCH_ACTIVE_STATUSES)))
            .order_by(Match.id)
            .all()
        )

    # Writes

    def save(self, match: Match) -> Match:
        self.session.add(match)
        self.session.flush()
        return match

    def append_rejection(self, record: RejectionRecord) -> RejectionRecord:
        # Insert only; the log has no update or delete path.
        self.session.add(record)
        self.session.flush()
        return record

    def commit(self) -> None:
        try:
            self.session.commit()
        except (OperationalError, InterfaceError) as exc:
            self.session.rollback()
            logger.warning("match_store_commit_failed", error=str(exc.orig) if getattr(exc, "orig", None) else str(exc))
            raise TransientError("Storage is temporarily unavailable, please retry") from exc

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Commit on success, roll back on any error.

        Locks taken with ``hold_until_commit`` inside the block are released
        after the commit (or rollback).
        """
        outer = getattr(_held, "stack", None)
        with ExitStack() as stack:
            _held.stack = stack
            try:
                yield
                self.commit()
            except BaseException:
                self.rollback()
                raise
            finally:
                _held.stack = outer
