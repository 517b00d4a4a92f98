from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from portal.schemas.assessment import (
    AnswerRequest,
    GameAnswerResponse,
    GameAnswerRequest,
    GameStatePublic,
    ModeRequest,
    NavigateRequest,
    OutcomePublic,
    QuestionPublic,
    ReviewItemPublic,
    ReviewResponse,
    SessionStateResponse,
    SetupRequest,
)
from portal.services.session_controller import SessionController, SessionRegistry
from portal.services.session_state import SessionOutcome, Stage
from portal.services.timer import format_remaining

router = APIRouter(prefix="/assessments", tags=["assessments"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_user_id(request: Request, x_user_id: str | None = Header(default=None)) -> str:
    uid = (x_user_id or "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail="missing X-User-ID header")
    request.state.user_id = uid
    return uid


def get_controller(
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionController:
    return registry.get_or_create(user_id)


def _outcome_public(ctl: SessionController, outcome: SessionOutcome) -> OutcomePublic:
    persisted = ctl.last_persisted
    return OutcomePublic(
        session_id=outcome.session_id,
        mode=outcome.mode,
        level=outcome.level,
        topic=outcome.topic,
        total_questions=outcome.total_questions,
        correct_count=outcome.correct_count,
        score=outcome.score,
        points_awarded=outcome.points_awarded,
        perfect_score=outcome.perfect_score,
        timed_out=outcome.timed_out,
        lives_left=outcome.lives_left,
        best_streak=outcome.best_streak,
        finished_at=outcome.finished_at,
        new_badges=list(persisted.new_badges) if persisted is not None else [],
    )


def _state(ctl: SessionController) -> SessionStateResponse:
    session = ctl.session
    remaining = ctl.remaining_seconds
    out = SessionStateResponse(
        stage=ctl.stage.value,
        mode=ctl.mode,
        level=ctl.level,
        topic=ctl.topic,
        current_index=ctl.current_index,
        remaining_seconds=remaining,
        remaining=format_remaining(remaining) if remaining is not None else None,
    )
    if session is not None:
        out.session_id = session.id
        out.questions = [
            QuestionPublic(index=i, id=q.id, text=q.text, options=list(q.options), topic=q.topic)
            for i, q in enumerate(session.questions)
        ]
        out.answers = dict(session.answers)

    gs = ctl.game_state
    if gs is not None:
        out.game = GameStatePublic(
            lives=gs.lives,
            score=gs.score,
            current_index=gs.current_index,
            streak=gs.streak,
            best_streak=gs.best_streak,
            feedback=gs.feedback.verdict if gs.feedback is not None else None,
            revealed_correct_index=gs.feedback.revealed_correct_index if gs.feedback is not None else None,
        )

    if ctl.outcome is not None:
        out.outcome = _outcome_public(ctl, ctl.outcome)
    return out


@router.get("/state", response_model=SessionStateResponse)
async def get_state(ctl: SessionController = Depends(get_controller)):
    return _state(ctl)


@router.post("/mode", response_model=SessionStateResponse)
async def select_mode(body: ModeRequest, ctl: SessionController = Depends(get_controller)):
    ctl.select_mode(body.mode)
    return _state(ctl)


@router.post("/setup", response_model=SessionStateResponse)
async def configure(body: SetupRequest, ctl: SessionController = Depends(get_controller)):
    ctl.configure(level=body.level, topic=body.topic)
    return _state(ctl)


@router.post("/start", response_model=SessionStateResponse)
async def start(ctl: SessionController = Depends(get_controller)):
    await ctl.start_exam()
    return _state(ctl)


@router.post("/answers", response_model=SessionStateResponse)
async def answer(body: AnswerRequest, ctl: SessionController = Depends(get_controller)):
    if body.option_index is None:
        ctl.clear_answer(body.question_index)
    else:
        ctl.answer(body.question_index, body.option_index)
    return _state(ctl)


@router.post("/navigate", response_model=SessionStateResponse)
async def navigate(body: NavigateRequest, ctl: SessionController = Depends(get_controller)):
    ctl.navigate(body.question_index)
    return _state(ctl)


@router.post("/game/answer", response_model=GameAnswerResponse)
async def game_answer(body: GameAnswerRequest, ctl: SessionController = Depends(get_controller)):
    verdict = ctl.answer_current(body.option_index)
    return GameAnswerResponse(accepted=verdict is not None, correct=verdict, state=_state(ctl))


@router.post("/submit", response_model=SessionStateResponse)
async def submit(ctl: SessionController = Depends(get_controller)):
    ctl.submit()
    return _state(ctl)


@router.post("/review", response_model=ReviewResponse)
async def review(ctl: SessionController = Depends(get_controller)):
    items = ctl.open_review() if ctl.stage is Stage.result else ctl.review_items()
    return ReviewResponse(
        outcome=_outcome_public(ctl, ctl.outcome),
        items=[
            ReviewItemPublic(
                index=it.index,
                text=it.question.text,
                options=list(it.question.options),
                chosen_index=it.chosen_index,
                correct_index=it.question.correct_index,
                is_correct=it.is_correct,
            )
            for it in items
        ],
    )


@router.post("/menu", response_model=SessionStateResponse)
async def menu(
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
    ctl: SessionController = Depends(get_controller),
):
    ctl.return_to_menu()
    state = _state(ctl)
    registry.release(user_id)
    return state
