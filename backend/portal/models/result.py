import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base


class ExamMode(str, enum.Enum):
    topic = "topic"
    mock = "mock"
    game = "game"


class TestResult(Base):
    """Completed standard-mode session. Rows are only ever inserted."""

    __tablename__ = "test_results"
    __test__ = False
    __table_args__ = (CheckConstraint("score >= 0 AND score <= 100", name="ck_test_results_score_range"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)

    mode: Mapped[ExamMode] = mapped_column(Enum(ExamMode), index=True)
    level: Mapped[int] = mapped_column(Integer)
    topic: Mapped[str | None] = mapped_column(String(200), nullable=True)

    score: Mapped[int] = mapped_column(Integer)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    total_questions: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
