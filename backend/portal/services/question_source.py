from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from pydantic import ValidationError

from portal.core.config import settings
from portal.core.errors import SourceError, SourceTimeoutError, SourceTransportError, SourceValidationError
from portal.models.result import ExamMode
from portal.schemas.question import GENERAL_TOPIC, Question, SynthesizedQuestion
from portal.services.generative import GenerativeTextService
from portal.services.question_bank import QuestionBank
from portal.services.session_state import QUESTION_COUNTS
from portal.services.usage import UsageSink

log = logging.getLogger(__name__)

MOCK_TOPIC = "Mock"

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: SourceError


SynthesisResult = Union[Ok[list[Question]], Err]


def topic_for(mode: ExamMode, topic: str | None) -> str:
    if mode is ExamMode.topic and topic:
        return topic.strip()
    if mode is ExamMode.mock:
        return MOCK_TOPIC
    return GENERAL_TOPIC


def build_prompt(*, mode: ExamMode, level: int, topic: str | None, count: int) -> str:
    if mode is ExamMode.topic:
        focus = f'Focus strictly on the course topic: "{(topic or "").strip()}".'
    elif mode is ExamMode.mock:
        focus = "Cover a broad mix of the core courses for this level, like a final examination."
    else:
        focus = "Keep every question short and quick to answer: this is a rapid-fire quiz game."
    return (
        f"Generate exactly {count} multiple-choice questions for {level} level university "
        f"finance students. {focus} "
        "Each question has 4 options and exactly one correct option. "
        'Return a JSON array of objects: {"text": string, "options": [string, string, string, string], '
        '"correctAnswer": integer index of the correct option}.'
    )


def extract_json_array(text: str) -> list[Any] | None:
    """Pull the question array out of a freeform reply (fences, prose or a wrapping object)."""

    if not text:
        return None

    s = text.strip()
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", s)
    if fenced:
        s = fenced.group(1).strip()

    candidates = [s]
    m = re.search(r"\[[\s\S]*\]", s)
    if m and m.group(0) != s:
        candidates.append(m.group(0))
    m = re.search(r"\{[\s\S]*\}", s)
    if m and m.group(0) != s:
        candidates.append(m.group(0))

    for c in candidates:
        try:
            obj = json.loads(c)
        except ValueError:
            continue
        if isinstance(obj, list):
            return obj
        if isinstance(obj, dict) and isinstance(obj.get("questions"), list):
            return obj["questions"]
    return None


def parse_synthesized(raw: str, *, mode: ExamMode, level: int, topic: str | None, count: int) -> list[Question]:
    items = extract_json_array(raw)
    if not items:
        raise SourceValidationError("reply does not contain a non-empty JSON array")
    if len(items) < count:
        raise SourceValidationError(f"reply has {len(items)} question(s), {count} required")

    use_topic = topic_for(mode, topic)
    out: list[Question] = []
    for i, item in enumerate(items[:count]):
        try:
            s = SynthesizedQuestion.model_validate(item)
            q = Question(
                id=f"ai-{i + 1}",
                text=s.text,
                options=tuple(s.options),
                correct_index=s.correctAnswer,
                level=level,
                topic=use_topic,
            )
        except ValidationError as e:
            raise SourceValidationError(f"question #{i} is malformed ({e.error_count()} error(s))", e) from e
        out.append(q)
    return out


class QuestionSourceProvider:
    """Generative questions under a hard deadline, with the question bank as the safety net."""

    def __init__(
        self,
        *,
        text_service: GenerativeTextService,
        bank: QuestionBank,
        usage: UsageSink | None = None,
        timeout_seconds: float | None = None,
        rng: random.Random | None = None,
    ):
        self.text_service = text_service
        self.bank = bank
        self.usage = usage
        self.timeout_seconds = float(timeout_seconds if timeout_seconds is not None else settings.synthesis_timeout_seconds)
        self.rng = rng or random.Random()
        self._usage_tasks: set[asyncio.Task] = set()

    def _dispatch_usage(self) -> None:
        if self.usage is None:
            return
        task = asyncio.get_running_loop().create_task(self._record_usage())
        self._usage_tasks.add(task)
        task.add_done_callback(self._usage_tasks.discard)

    async def _record_usage(self) -> None:
        # The sink may block on the network; keep it off the event loop.
        try:
            await asyncio.to_thread(self.usage.record_synthesis)
        except Exception:
            log.exception("question source: usage sink failed")

    async def wait_for_usage(self) -> None:
        """Await any usage counters still being written."""
        while self._usage_tasks:
            await asyncio.gather(*list(self._usage_tasks), return_exceptions=True)

    async def synthesize(self, *, mode: ExamMode, level: int, topic: str | None = None) -> SynthesisResult:
        count = QUESTION_COUNTS[mode]
        if not self.text_service.available:
            return Err(SourceTransportError("generative service is not configured"))

        prompt = build_prompt(mode=mode, level=level, topic=topic, count=count)
        try:
            raw = await asyncio.wait_for(self.text_service.generate(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            return Err(SourceTimeoutError(f"synthesis exceeded {self.timeout_seconds:g}s", e))
        except SourceError as e:
            return Err(e)
        except Exception as e:
            return Err(SourceTransportError(f"synthesis failed: {type(e).__name__}", e))

        try:
            return Ok(parse_synthesized(raw, mode=mode, level=level, topic=topic, count=count))
        except SourceValidationError as e:
            return Err(e)

    def fallback(self, *, mode: ExamMode, level: int) -> list[Question]:
        return self.bank.sample(level=level, count=QUESTION_COUNTS[mode], rng=self.rng)

    async def acquire(self, *, mode: ExamMode, level: int, topic: str | None = None) -> list[Question]:
        result = await self.synthesize(mode=mode, level=level, topic=topic)
        if isinstance(result, Ok):
            log.info("question source: synthesized %s question(s) mode=%s level=%s", len(result.value), mode.value, level)
            self._dispatch_usage()
            return result.value

        reason = result.reason
        log.warning(
            "question source: falling back to question bank mode=%s level=%s reason=%s detail=%s",
            mode.value,
            level,
            reason.error_code,
            reason.message,
        )
        return self.fallback(mode=mode, level=level)
