from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.errors import PersistenceError
from portal.db import session as session_module
from portal.models.result import TestResult
from portal.models.user import User
from portal.services.badges import as_uuid, award_test_badges, grant_contribution_points
from portal.services.session_state import SessionOutcome

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistedResult:
    result_id: uuid.UUID | None
    points_awarded: int
    new_badges: tuple[str, ...]


class ResultPersistenceAdapter:
    """Sole writer of results, contribution points and badges.

    Failures are logged and reported as None; nothing is raised to the caller.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory

    def _open(self) -> Session:
        factory = self._session_factory or session_module.SessionLocal
        return factory()

    async def persist(self, outcome: SessionOutcome) -> PersistedResult | None:
        try:
            return await asyncio.to_thread(self._write, outcome)
        except PersistenceError as e:
            log.exception(
                "result persistence failed session=%s user=%s err=%s",
                outcome.session_id,
                outcome.user_id,
                e.message,
            )
            return None

    def _write(self, outcome: SessionOutcome) -> PersistedResult:
        if not outcome.is_standard:
            # Game points are not a percentage and never reach the results table.
            log.info("game session finished session=%s user=%s points=%s", outcome.session_id, outcome.user_id, outcome.score)
            return PersistedResult(result_id=None, points_awarded=0, new_badges=())

        uid = as_uuid(outcome.user_id)
        if uid is None:
            raise PersistenceError(f"user id is not a UUID: {outcome.user_id!r}")

        try:
            with self._open() as db:
                exists = db.scalar(select(User.id).where(User.id == uid))
                if exists is None:
                    raise PersistenceError(f"unknown user {uid}")

                row = TestResult(
                    user_id=uid,
                    mode=outcome.mode,
                    level=int(outcome.level),
                    topic=outcome.topic,
                    score=int(outcome.score),
                    correct_count=int(outcome.correct_count),
                    total_questions=int(outcome.total_questions),
                    created_at=outcome.finished_at,
                )
                db.add(row)
                grant_contribution_points(db, user_id=uid, points=outcome.points_awarded)
                db.flush()
                result_id = row.id
                db.commit()

                new_badges = self._award_badges(db, outcome, uid)
        except SQLAlchemyError as e:
            raise PersistenceError(f"database write failed: {type(e).__name__}", e) from e

        log.info(
            "result saved session=%s user=%s score=%s points=%s badges=%s",
            outcome.session_id,
            outcome.user_id,
            outcome.score,
            outcome.points_awarded,
            ",".join(new_badges) or "-",
        )
        return PersistedResult(result_id=result_id, points_awarded=outcome.points_awarded, new_badges=tuple(new_badges))

    def _award_badges(self, db: Session, outcome: SessionOutcome, uid: uuid.UUID) -> list[str]:
        # Runs after the result is committed; losing a badge race must not lose the result.
        try:
            new_badges = award_test_badges(db, user_id=uid, latest_score=int(outcome.score))
            db.commit()
        except IntegrityError:
            db.rollback()
            log.warning("badge award conflicted, keeping existing badges session=%s user=%s", outcome.session_id, outcome.user_id)
            return []
        return new_badges
