from __future__ import annotations

from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StringConstraints, model_validator

Level = Literal[100, 200, 300, 400]
LEVELS: tuple[int, ...] = (100, 200, 300, 400)

GENERAL_TOPIC = "General"

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class Question(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    text: NonBlank
    options: tuple[NonBlank, ...] = Field(min_length=2)
    correct_index: StrictInt = Field(validation_alias=AliasChoices("correct_index", "correctAnswer"))
    level: Level
    topic: NonBlank

    @model_validator(mode="after")
    def _correct_index_in_range(self) -> "Question":
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(f"correct_index {self.correct_index} out of range for {len(self.options)} options")
        return self


class SynthesizedQuestion(BaseModel):
    """One element of the generative service's JSON array, before it becomes a Question."""

    text: NonBlank
    options: list[NonBlank] = Field(min_length=2)
    correctAnswer: StrictInt

    @model_validator(mode="after")
    def _answer_in_range(self) -> "SynthesizedQuestion":
        if not 0 <= self.correctAnswer < len(self.options):
            raise ValueError("correctAnswer out of range")
        return self
