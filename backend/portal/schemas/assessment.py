from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from portal.models.result import ExamMode


class ModeRequest(BaseModel):
    mode: ExamMode


class SetupRequest(BaseModel):
    level: int
    topic: str | None = None


class AnswerRequest(BaseModel):
    question_index: int = Field(ge=0)
    # None withdraws the answer.
    option_index: int | None = Field(default=None, ge=0)


class NavigateRequest(BaseModel):
    question_index: int = Field(ge=0)


class GameAnswerRequest(BaseModel):
    option_index: int = Field(ge=0)


class QuestionPublic(BaseModel):
    index: int
    id: str
    text: str
    options: list[str]
    topic: str


class GameStatePublic(BaseModel):
    lives: int
    score: int
    current_index: int
    streak: int
    best_streak: int
    feedback: str | None = None
    revealed_correct_index: int | None = None


class OutcomePublic(BaseModel):
    session_id: str
    mode: ExamMode
    level: int
    topic: str | None
    total_questions: int
    correct_count: int
    score: int
    points_awarded: int
    perfect_score: bool
    timed_out: bool
    lives_left: int | None = None
    best_streak: int | None = None
    finished_at: datetime
    new_badges: list[str] = []


class SessionStateResponse(BaseModel):
    stage: str
    mode: ExamMode | None = None
    level: int | None = None
    topic: str | None = None
    session_id: str | None = None
    current_index: int = 0
    remaining_seconds: int | None = None
    remaining: str | None = None
    questions: list[QuestionPublic] = []
    answers: dict[int, int] = {}
    game: GameStatePublic | None = None
    outcome: OutcomePublic | None = None


class GameAnswerResponse(BaseModel):
    accepted: bool
    correct: bool | None = None
    state: SessionStateResponse


class ReviewItemPublic(BaseModel):
    index: int
    text: str
    options: list[str]
    chosen_index: int | None
    correct_index: int
    is_correct: bool


class ReviewResponse(BaseModel):
    outcome: OutcomePublic
    items: list[ReviewItemPublic]
