from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from portal.core.config import settings
from portal.core.errors import AnswerRejectedError, InvalidTransitionError, SessionSetupError
from portal.models.result import ExamMode
from portal.schemas.question import LEVELS
from portal.services.result_persistence import PersistedResult, ResultPersistenceAdapter
from portal.services.question_source import QuestionSourceProvider
from portal.services.scoring import GameRound, contribution_points, is_perfect, score_standard
from portal.services.session_state import GameRuntimeState, ReviewItem, Session, SessionOutcome, Stage
from portal.services.timer import CountdownTimer

log = logging.getLogger(__name__)


class Event(str, enum.Enum):
    select_mode = "select_mode"
    start = "start"
    questions_ready = "questions_ready"
    submit = "submit"
    timer_expired = "timer_expired"
    game_over = "game_over"
    open_review = "open_review"
    return_to_menu = "return_to_menu"


_TRANSITIONS: dict[tuple[Stage, Event], Stage] = {
    (Stage.menu, Event.select_mode): Stage.setup,
    (Stage.setup, Event.start): Stage.loading,
    (Stage.setup, Event.return_to_menu): Stage.menu,
    (Stage.loading, Event.questions_ready): Stage.exam,
    (Stage.loading, Event.return_to_menu): Stage.menu,
    (Stage.exam, Event.submit): Stage.result,
    (Stage.exam, Event.timer_expired): Stage.result,
    (Stage.exam, Event.game_over): Stage.result,
    (Stage.exam, Event.return_to_menu): Stage.menu,
    (Stage.result, Event.open_review): Stage.review,
    (Stage.result, Event.return_to_menu): Stage.menu,
    (Stage.review, Event.return_to_menu): Stage.menu,
}


def transition(stage: Stage, event: Event) -> Stage:
    try:
        return _TRANSITIONS[(stage, event)]
    except KeyError:
        raise InvalidTransitionError(stage, event) from None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


CompletionListener = Callable[[SessionOutcome], None]
TimerFactory = Callable[..., CountdownTimer]


class SessionController:
    """Drives one user's exam lifecycle: menu -> setup -> loading -> exam -> result -> review.

    All methods run on the event loop thread. Timer callbacks read the controller's
    current session on every tick.
    """

    def __init__(
        self,
        *,
        user_id: str,
        provider: QuestionSourceProvider,
        persistence: ResultPersistenceAdapter,
        timer_factory: TimerFactory = CountdownTimer,
        clock: Callable[[], datetime] = _utcnow,
        topic_seconds: int | None = None,
        mock_seconds: int | None = None,
        game_question_seconds: int | None = None,
    ):
        self.user_id = str(user_id)
        self._provider = provider
        self._persistence = persistence
        self._clock = clock
        self._durations = {
            ExamMode.topic: int(topic_seconds or settings.topic_duration_seconds),
            ExamMode.mock: int(mock_seconds or settings.mock_duration_seconds),
        }
        self._game_question_seconds = int(game_question_seconds or settings.game_question_seconds)
        self._timer = timer_factory(self._on_timer_expire, self._on_timer_tick)

        self._stage = Stage.menu
        self._mode: ExamMode | None = None
        self._level: int | None = None
        self._topic: str | None = None
        self._session: Session | None = None
        self._game: GameRound | None = None
        self._outcome: SessionOutcome | None = None
        self._current_index = 0
        # Bumped whenever the current session is discarded so late provider replies are dropped.
        self._epoch = 0
        self._listeners: list[CompletionListener] = []
        self._persist_tasks: set[asyncio.Task] = set()
        self.last_persisted: PersistedResult | None = None

    # --- read-only views ---

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def mode(self) -> ExamMode | None:
        return self._mode

    @property
    def level(self) -> int | None:
        return self._level

    @property
    def topic(self) -> str | None:
        return self._topic

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def game_state(self) -> GameRuntimeState | None:
        return self._game.state if self._game is not None else None

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    @property
    def current_index(self) -> int:
        if self._game is not None:
            return self._game.state.current_index
        return self._current_index

    @property
    def timer(self) -> CountdownTimer:
        return self._timer

    @property
    def remaining_seconds(self) -> int | None:
        return self._timer.remaining if self._timer.running else None

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    # --- menu / setup ---

    def _fire(self, event: Event) -> Stage:
        self._stage = transition(self._stage, event)
        return self._stage

    def select_mode(self, mode: ExamMode) -> None:
        self._fire(Event.select_mode)
        self._mode = ExamMode(mode)
        self._level = None
        self._topic = None

    def configure(self, *, level: int, topic: str | None = None) -> None:
        if self._stage is not Stage.setup:
            raise InvalidTransitionError(self._stage, "configure")
        if level not in LEVELS:
            raise SessionSetupError(f"level must be one of {', '.join(str(x) for x in LEVELS)}")
        clean_topic = (topic or "").strip() or None
        if self._mode is ExamMode.topic and clean_topic is None:
            raise SessionSetupError("topic mode requires a topic")
        self._level = int(level)
        self._topic = clean_topic if self._mode is ExamMode.topic else None

    async def start_exam(self) -> Session | None:
        """Acquire questions and enter the exam. Returns None if the user left while loading."""

        if self._stage is Stage.setup and self._level is None:
            raise SessionSetupError("select a level before starting")
        self._fire(Event.start)
        self._discard_session()
        epoch = self._epoch
        mode, level, topic = self._mode, self._level, self._topic

        try:
            questions = await self._provider.acquire(mode=mode, level=level, topic=topic)
        except Exception:
            if epoch == self._epoch and self._stage is Stage.loading:
                self._fire(Event.return_to_menu)
            raise

        if epoch != self._epoch or self._stage is not Stage.loading:
            log.info("discarding questions for abandoned session user=%s", self.user_id)
            return None

        session = Session(mode=mode, level=level, questions=tuple(questions), topic=topic)
        self._session = session
        self._current_index = 0
        self._fire(Event.questions_ready)
        session.stage = Stage.exam

        if mode is ExamMode.game:
            self._game = GameRound(session.questions)
            seconds = self._game_question_seconds
        else:
            seconds = self._durations[mode]
        session.deadline = self._clock() + timedelta(seconds=seconds)
        self._timer.arm(seconds)
        log.info(
            "exam started session=%s user=%s mode=%s level=%s questions=%s",
            session.id,
            self.user_id,
            mode.value,
            level,
            len(session.questions),
        )
        return session

    # --- exam ---

    def _require_exam(self, action: str) -> Session:
        if self._stage is not Stage.exam or self._session is None:
            raise InvalidTransitionError(self._stage, action)
        return self._session

    def navigate(self, question_index: int) -> None:
        session = self._require_exam("navigate")
        if session.mode is ExamMode.game:
            raise AnswerRejectedError("free navigation is not available in game mode")
        if not 0 <= question_index < len(session.questions):
            raise AnswerRejectedError(f"question index {question_index} out of range")
        self._current_index = question_index

    def answer(self, question_index: int, option_index: int) -> None:
        session = self._require_exam("answer")
        if session.mode is ExamMode.game:
            raise AnswerRejectedError("game answers are given for the current question only")
        session.record_answer(question_index, option_index)

    def clear_answer(self, question_index: int) -> None:
        session = self._require_exam("clear_answer")
        if session.mode is ExamMode.game:
            raise AnswerRejectedError("game answers cannot be withdrawn")
        session.clear_answer(question_index)

    def answer_current(self, option_index: int) -> bool | None:
        """Score a game answer for the current question. None means the input was ignored."""

        session = self._require_exam("answer_current")
        game = self._game
        if game is None:
            raise AnswerRejectedError("only game mode scores answers immediately")
        if game.awaiting_advance:
            return None
        idx = game.state.current_index
        if not 0 <= option_index < len(session.questions[idx].options):
            raise AnswerRejectedError(f"option index {option_index} out of range for question {idx}")

        session.record_answer(idx, option_index)
        verdict = game.submit(option_index)
        if game.over:
            self._finalize(Event.game_over)
        return verdict

    def submit(self) -> SessionOutcome:
        self._require_exam("submit")
        return self._finalize(Event.submit)

    # --- timer callbacks ---

    def _on_timer_tick(self, remaining: int) -> None:
        if self._stage is not Stage.exam or self._game is None:
            return
        if self._game.awaiting_advance:
            self._game.advance()
            self._timer.reset(self._game_question_seconds)
            if self._session is not None:
                self._session.deadline = self._clock() + timedelta(seconds=self._game_question_seconds)

    def _on_timer_expire(self) -> None:
        if self._stage is not Stage.exam or self._session is None:
            return
        if self._game is None:
            self._finalize(Event.timer_expired, timed_out=True)
            return
        if self._game.expire() and self._game.over:
            self._finalize(Event.timer_expired, timed_out=True)

    # --- result / review ---

    def _finalize(self, event: Event, *, timed_out: bool = False) -> SessionOutcome:
        session = self._session
        self._timer.cancel()
        session.freeze()
        outcome = self._build_outcome(session, timed_out=timed_out)

        self._fire(event)
        session.stage = Stage.result
        self._outcome = outcome
        log.info(
            "exam finished session=%s user=%s mode=%s score=%s correct=%s/%s via=%s",
            outcome.session_id,
            self.user_id,
            outcome.mode.value,
            outcome.score,
            outcome.correct_count,
            outcome.total_questions,
            event.value,
        )

        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:
                log.exception("completion listener failed session=%s", outcome.session_id)

        self._dispatch_persistence(outcome)
        return outcome

    def _build_outcome(self, session: Session, *, timed_out: bool) -> SessionOutcome:
        common = dict(
            session_id=session.id,
            user_id=self.user_id,
            mode=session.mode,
            level=session.level,
            topic=session.topic,
            total_questions=len(session.questions),
            finished_at=self._clock(),
            timed_out=timed_out,
        )
        if self._game is not None:
            st = self._game.state
            return SessionOutcome(
                correct_count=self._game.correct_count,
                score=st.score,
                points_awarded=0,
                perfect_score=False,
                lives_left=st.lives,
                best_streak=st.best_streak,
                **common,
            )

        scored = score_standard(session.questions, session.answers)
        return SessionOutcome(
            correct_count=scored.correct,
            score=scored.score,
            points_awarded=contribution_points(scored.score),
            perfect_score=is_perfect(scored.score),
            **common,
        )

    def _dispatch_persistence(self, outcome: SessionOutcome) -> None:
        task = asyncio.get_running_loop().create_task(self._persist(outcome))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist(self, outcome: SessionOutcome) -> None:
        persisted = await self._persistence.persist(outcome)
        if persisted is not None and self._outcome is not None and self._outcome.session_id == outcome.session_id:
            self.last_persisted = persisted

    @property
    def persistence_pending(self) -> bool:
        return bool(self._persist_tasks)

    async def wait_for_persistence(self) -> None:
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks))

    def open_review(self) -> list[ReviewItem]:
        self._fire(Event.open_review)
        if self._session is not None:
            self._session.stage = Stage.review
        return self.review_items()

    def review_items(self) -> list[ReviewItem]:
        if self._stage not in (Stage.result, Stage.review) or self._session is None:
            raise InvalidTransitionError(self._stage, "review")
        answers = self._session.answers
        return [ReviewItem(index=i, question=q, chosen_index=answers.get(i)) for i, q in enumerate(self._session.questions)]

    # --- teardown ---

    def _discard_session(self) -> None:
        self._timer.cancel()
        self._epoch += 1
        self._session = None
        self._game = None
        self._outcome = None
        self.last_persisted = None
        self._current_index = 0

    def return_to_menu(self) -> None:
        if self._stage is Stage.menu:
            return
        self._fire(Event.return_to_menu)
        self._discard_session()
        self._mode = None
        self._level = None
        self._topic = None

    def close(self) -> None:
        self.return_to_menu()
        self._timer.cancel()
        self._listeners.clear()


ControllerFactory = Callable[[str], SessionController]


def default_controller_factory(user_id: str) -> SessionController:
    from portal.services.generative import ChatCompletionsTextService
    from portal.services.question_bank import get_question_bank
    from portal.services.usage import RedisUsageTracker

    provider = QuestionSourceProvider(
        text_service=ChatCompletionsTextService(),
        bank=get_question_bank(),
        usage=RedisUsageTracker(),
    )
    return SessionController(user_id=user_id, provider=provider, persistence=ResultPersistenceAdapter())


class SessionRegistry:
    """At most one controller per user.

    Controllers back at the menu are dropped once their result write has
    finished; anything else outside an exam or a load is dropped after
    ``idle_ttl_seconds`` without a request. Sweeps run whenever a new
    controller is created, so the map stays bounded by the users who are
    actually mid-session.
    """

    def __init__(
        self,
        factory: ControllerFactory = default_controller_factory,
        *,
        idle_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._controllers: dict[str, SessionController] = {}
        self._last_seen: dict[str, float] = {}
        self.idle_ttl_seconds = float(idle_ttl_seconds if idle_ttl_seconds is not None else settings.session_idle_ttl_seconds)
        self._clock = clock

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, user_id: str) -> SessionController | None:
        return self._controllers.get(str(user_id))

    def get_or_create(self, user_id: str) -> SessionController:
        uid = str(user_id)
        now = self._clock()
        ctl = self._controllers.get(uid)
        if ctl is None:
            self.sweep(now=now)
            ctl = self.replace(uid)
        self._last_seen[uid] = now
        return ctl

    def replace(self, user_id: str) -> SessionController:
        uid = str(user_id)
        old = self._controllers.pop(uid, None)
        if old is not None:
            old.close()
        ctl = self._factory(uid)
        self._controllers[uid] = ctl
        self._last_seen[uid] = self._clock()
        return ctl

    def _evictable(self, uid: str, ctl: SessionController, now: float) -> bool:
        if ctl.persistence_pending or ctl.stage in (Stage.loading, Stage.exam):
            return False
        if ctl.stage is Stage.menu:
            return True
        return now - self._last_seen.get(uid, now) >= self.idle_ttl_seconds

    def _evict(self, uid: str) -> None:
        ctl = self._controllers.pop(uid, None)
        self._last_seen.pop(uid, None)
        if ctl is not None:
            ctl.close()

    def release(self, user_id: str) -> bool:
        """Drop the user's controller if it is idle at the menu."""
        uid = str(user_id)
        ctl = self._controllers.get(uid)
        if ctl is None or ctl.stage is not Stage.menu or ctl.persistence_pending:
            return False
        self._evict(uid)
        return True

    def sweep(self, *, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        stale = [uid for uid, ctl in self._controllers.items() if self._evictable(uid, ctl, now)]
        for uid in stale:
            self._evict(uid)
        if stale:
            log.info("session registry: evicted %s idle controller(s), %s remain", len(stale), len(self._controllers))
        return len(stale)

    def close_all(self) -> None:
        for ctl in list(self._controllers.values()):
            ctl.close()
        self._controllers.clear()
        self._last_seen.clear()
