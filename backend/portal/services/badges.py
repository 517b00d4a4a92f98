import uuid
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from portal.models.result import TestResult
from portal.models.user import User, UserBadge


@dataclass(frozen=True)
class BadgeDefinition:
    name: str
    description: str
    rank: int


BADGE_DEFINITIONS: dict[str, BadgeDefinition] = {
    "PERFECT_SCORE": BadgeDefinition("Perfect Score", "Scored 100% in a CBT practice.", 45),
    "SHARP_SHOOTER": BadgeDefinition("Sharp Shooter", "Scored 80%+ in any CBT practice.", 20),
    "GENIUS": BadgeDefinition("Genius", "Scored 95%+ in any CBT practice.", 40),
    "VETERAN_5": BadgeDefinition("Test Veteran", "Completed 5 CBT practice sessions.", 25),
    "VETERAN_20": BadgeDefinition("Exam Warrior", "Completed 20+ CBT practice sessions.", 55),
}


def as_uuid(value) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def grant_contribution_points(db: Session, *, user_id: uuid.UUID, points: int) -> None:
    if points <= 0:
        return
    # Single UPDATE so concurrent grants for the same user add up.
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(contribution_points=func.coalesce(User.contribution_points, 0) + int(points))
        .execution_options(synchronize_session=False)
    )


def evaluate_test_badges(*, result_count: int, best_score: int, latest_score: int) -> set[str]:
    earned: set[str] = set()
    if latest_score == 100:
        earned.add("PERFECT_SCORE")
    if best_score >= 80:
        earned.add("SHARP_SHOOTER")
    if best_score >= 95:
        earned.add("GENIUS")
    if result_count >= 5:
        earned.add("VETERAN_5")
    if result_count >= 20:
        earned.add("VETERAN_20")
    return earned


def award_test_badges(db: Session, *, user_id: uuid.UUID, latest_score: int) -> list[str]:
    """Add the test badges the user now qualifies for. Returns only the newly added ones.

    Must run after the latest result has been flushed so it is part of the counts.
    """

    result_count, best_score = db.execute(
        select(func.count(TestResult.id), func.coalesce(func.max(TestResult.score), 0)).where(TestResult.user_id == user_id)
    ).one()

    earned = evaluate_test_badges(result_count=int(result_count), best_score=int(best_score), latest_score=latest_score)
    if not earned:
        return []

    existing = set(db.scalars(select(UserBadge.badge_id).where(UserBadge.user_id == user_id)).all())
    new_badges = sorted(earned - existing, key=lambda b: BADGE_DEFINITIONS[b].rank)
    for badge_id in new_badges:
        db.add(UserBadge(user_id=user_id, badge_id=badge_id))
    return new_badges
