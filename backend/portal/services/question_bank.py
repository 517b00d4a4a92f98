from __future__ import annotations

import json
import logging
import random
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from portal.schemas.question import GENERAL_TOPIC, Question

log = logging.getLogger(__name__)

DEFAULT_BANK_PATH = Path(__file__).resolve().parents[1] / "data" / "question_bank.json"


def parse_bank_records(records: Iterable[Any]) -> list[Question]:
    """Validate raw bank records, dropping the ones that break the Question invariants."""

    out: list[Question] = []
    seen_ids: set[str] = set()
    for i, raw in enumerate(records or []):
        try:
            q = Question.model_validate(raw)
        except ValidationError as e:
            log.warning("question bank: rejected record #%s (%s error(s))", i, e.error_count())
            continue
        if q.id in seen_ids:
            log.warning("question bank: rejected duplicate id=%s", q.id)
            continue
        seen_ids.add(q.id)
        out.append(q)
    return out


class QuestionBank:
    def __init__(self, questions: Iterable[Question]):
        self._questions: tuple[Question, ...] = tuple(questions)

    @classmethod
    def from_file(cls, path: Path | str = DEFAULT_BANK_PATH) -> "QuestionBank":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        records = data.get("questions") if isinstance(data, dict) else data
        questions = parse_bank_records(records or [])
        log.info("question bank: loaded %s question(s) from %s", len(questions), path)
        return cls(questions)

    def __len__(self) -> int:
        return len(self._questions)

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    def eligible(self, level: int) -> list[Question]:
        return [q for q in self._questions if q.level == level or q.topic == GENERAL_TOPIC]

    def sample(self, *, level: int, count: int, rng: random.Random | None = None) -> list[Question]:
        """Uniformly shuffled pick of `count` questions for `level`.

        Entries tagged "General" are eligible at every level. When the level pool
        cannot cover `count`, the whole bank is used instead.
        """

        if count <= 0:
            return []
        if not self._questions:
            raise ValueError("question bank is empty")

        rng = rng or random.Random()
        pool = self.eligible(level)
        if len(pool) < count:
            log.info("question bank: level=%s pool=%s < %s, sampling entire bank", level, len(pool), count)
            pool = list(self._questions)

        picked: list[Question] = []
        while len(picked) < count:
            batch = list(pool)
            rng.shuffle(batch)
            picked.extend(batch[: count - len(picked)])
            if len(picked) < count:
                log.warning("question bank: only %s question(s) available, repeating to reach %s", len(pool), count)
        return picked


@lru_cache(maxsize=1)
def get_question_bank() -> QuestionBank:
    return QuestionBank.from_file(DEFAULT_BANK_PATH)
