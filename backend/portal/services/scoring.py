from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from portal.schemas.question import Question
from portal.services.session_state import Feedback, GameRuntimeState

GAME_START_LIVES = 3
GAME_POINTS_PER_CORRECT = 10

# (minimum score, contribution points), highest threshold first.
CONTRIBUTION_POINT_TIERS: tuple[tuple[int, int], ...] = ((80, 5), (50, 2))


@dataclass(frozen=True)
class StandardScore:
    correct: int
    total: int
    score: int


def percentage(correct: int, total: int) -> int:
    # Half-up rounding of 100 * correct / total in integer arithmetic (75.5 -> 76).
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def count_correct(questions: Sequence[Question], answers: Mapping[int, int]) -> int:
    return sum(1 for i, q in enumerate(questions) if answers.get(i) == q.correct_index)


def score_standard(questions: Sequence[Question], answers: Mapping[int, int]) -> StandardScore:
    correct = count_correct(questions, answers)
    return StandardScore(correct=correct, total=len(questions), score=percentage(correct, len(questions)))


def contribution_points(score: int) -> int:
    for threshold, points in CONTRIBUTION_POINT_TIERS:
        if score >= threshold:
            return points
    return 0


def is_perfect(score: int) -> bool:
    return score == 100


class GameRound:
    """Incremental lives/streak loop over a fixed question sequence.

    After every answer the feedback stays visible until `advance()` is called
    (one timer tick later); input is ignored meanwhile. The round is over the
    moment lives reach zero or the last question has been answered.
    """

    def __init__(self, questions: Sequence[Question], state: GameRuntimeState | None = None):
        if not questions:
            raise ValueError("game needs at least one question")
        self.questions = tuple(questions)
        self.state = state or GameRuntimeState(lives=GAME_START_LIVES)
        self.correct_count = 0
        self._over = False

    @property
    def over(self) -> bool:
        return self._over

    @property
    def current_question(self) -> Question:
        return self.questions[self.state.current_index]

    @property
    def awaiting_advance(self) -> bool:
        return self.state.feedback is not None and not self._over

    def submit(self, option_index: int) -> bool | None:
        """Score an answer for the current question. Returns None when the input is ignored."""

        if self._over or self.state.feedback is not None:
            return None
        correct = option_index == self.current_question.correct_index
        self._settle(correct)
        return correct

    def expire(self) -> bool:
        """Time ran out on the current question: counts as a wrong answer."""

        if self._over or self.state.feedback is not None:
            return False
        self._settle(False)
        return True

    def advance(self) -> None:
        if self._over or self.state.feedback is None:
            return
        self.state.feedback = None
        self.state.current_index += 1

    def _settle(self, correct: bool) -> None:
        st = self.state
        q = self.current_question
        if correct:
            st.score += GAME_POINTS_PER_CORRECT
            st.streak += 1
            st.best_streak = max(st.best_streak, st.streak)
            self.correct_count += 1
        else:
            st.lives = max(0, st.lives - 1)
            st.streak = 0
        st.feedback = Feedback(
            verdict="correct" if correct else "wrong",
            revealed_correct_index=q.correct_index,
            question_index=st.current_index,
        )
        if st.lives == 0 or st.current_index >= len(self.questions) - 1:
            self._over = True
