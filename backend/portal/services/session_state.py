from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Literal, Mapping

from portal.core.errors import AnswerRejectedError
from portal.models.result import ExamMode
from portal.schemas.question import Question

QUESTION_COUNTS: Mapping[ExamMode, int] = MappingProxyType(
    {
        ExamMode.topic: 20,
        ExamMode.mock: 30,
        ExamMode.game: 50,
    }
)


class Stage(str, enum.Enum):
    menu = "menu"
    setup = "setup"
    loading = "loading"
    exam = "exam"
    result = "result"
    review = "review"


@dataclass(frozen=True)
class Feedback:
    verdict: Literal["correct", "wrong"]
    revealed_correct_index: int
    question_index: int


@dataclass
class GameRuntimeState:
    lives: int = 3
    score: int = 0
    current_index: int = 0
    feedback: Feedback | None = None
    streak: int = 0
    best_streak: int = 0


@dataclass
class Session:
    mode: ExamMode
    level: int
    questions: tuple[Question, ...]
    topic: str | None = None
    deadline: datetime | None = None
    stage: Stage = Stage.loading
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    _answers: dict[int, int] = field(default_factory=dict, repr=False)
    _frozen: bool = field(default=False, repr=False)

    @property
    def answers(self) -> Mapping[int, int]:
        return MappingProxyType(self._answers)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_question(self, question_index: int) -> Question:
        if self._frozen:
            raise AnswerRejectedError("session is finalized; answers can no longer change")
        if not 0 <= question_index < len(self.questions):
            raise AnswerRejectedError(f"question index {question_index} out of range")
        return self.questions[question_index]

    def record_answer(self, question_index: int, option_index: int) -> None:
        q = self._check_question(question_index)
        if not 0 <= option_index < len(q.options):
            raise AnswerRejectedError(f"option index {option_index} out of range for question {question_index}")
        self._answers[question_index] = option_index

    def clear_answer(self, question_index: int) -> None:
        self._check_question(question_index)
        self._answers.pop(question_index, None)

    def freeze(self) -> None:
        self._frozen = True


@dataclass(frozen=True)
class ReviewItem:
    index: int
    question: Question
    chosen_index: int | None

    @property
    def is_correct(self) -> bool:
        return self.chosen_index is not None and self.chosen_index == self.question.correct_index


@dataclass(frozen=True)
class SessionOutcome:
    """Immutable record produced once at finalize.

    `score` is the 0-100 percentage for standard modes and the raw point total
    for game mode.
    """

    session_id: str
    user_id: str
    mode: ExamMode
    level: int
    topic: str | None
    total_questions: int
    correct_count: int
    score: int
    points_awarded: int
    perfect_score: bool
    finished_at: datetime
    timed_out: bool = False
    lives_left: int | None = None
    best_streak: int | None = None

    @property
    def is_standard(self) -> bool:
        return self.mode is not ExamMode.game
