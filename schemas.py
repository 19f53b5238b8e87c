"""Pydantic schemas for stored records, session state and webhook payloads."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

__all__ = [
    "DIFFICULTIES",
    "FLOW_TYPES",
    "Choice",
    "Question",
    "User",
    "Session",
    "SessionState",
    "NeedsReset",
    "QuestionRun",
    "AskLevel",
    "AskTopic",
    "PanicPlan",
    "MicroModule",
    "Burst",
    "MomentumMenu",
    "AskGrade",
    "AskStressLevel",
    "AskSubject",
    "AskProblemDetails",
    "AskExamDate",
    "PlanDecision",
    "AskPreferredTime",
    "PlanAction",
    "Lesson",
    "Practice",
    "PracticeContinue",
    "AskReason",
    "AskPreConfidence",
    "GenerateSupport",
    "ShowLadder",
    "EasyLadder",
    "MediumLadder",
    "AskPostConfidence",
    "Complete",
    "WebhookBody",
    "WebhookReply",
    "parse_session_state",
    "dump_session_state",
]

Difficulty = Literal["easy", "medium", "hard"]
FlowType = Literal["panic", "stress", "confidence", "exam_prep", "practice"]

DIFFICULTIES: Tuple[str, ...] = ("easy", "medium", "hard")
FLOW_TYPES: Tuple[str, ...] = ("panic", "stress", "confidence", "exam_prep", "practice")


# ------------------------------------------------------------------
# content
# ------------------------------------------------------------------
class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    letter: str
    text: str
    weakness_tag: Optional[str] = None

    @field_validator("letter")
    @classmethod
    def _upper_letter(cls, value: str) -> str:
        return value.strip().upper()


class Question(BaseModel):
    """Multiple-choice question plus its serve and correctness statistics."""

    model_config = ConfigDict(frozen=True)

    id: str
    subject: str = "math"
    topic: str
    difficulty: Difficulty
    question_text: str
    choices: Tuple[Choice, ...]
    correct_choice: str
    explanation: Optional[str] = None
    is_active: bool = True
    times_served: int = 0
    times_answered: int = 0
    times_correct: int = 0
    accuracy_rate: Optional[float] = None
    last_served_at: Optional[datetime] = None

    def choice(self, letter: str) -> Optional[Choice]:
        wanted = (letter or "").strip().upper()
        for option in self.choices:
            if option.letter == wanted:
                return option
        return None


# ------------------------------------------------------------------
# learner
# ------------------------------------------------------------------
class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    grade: Optional[Literal["10", "11", "varsity"]] = None
    skill_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    streak_count: int = Field(default=0, ge=0)
    total_answered: int = Field(default=0, ge=0)
    total_correct: int = Field(default=0, ge=0)
    difficulty_band: Optional[Difficulty] = None
    current_question_id: Optional[str] = None
    current_menu: str = "welcome"
    active_session_id: Optional[int] = None
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ------------------------------------------------------------------
# session state
# ------------------------------------------------------------------
class _Step(BaseModel):
    model_config = ConfigDict(frozen=True)


class NeedsReset(_Step):
    """Stored state that could not be understood; the flow restarts."""

    step: Literal["needs_reset"] = "needs_reset"
    unknown_step: Optional[str] = None


class QuestionRun(_Step):
    """Shared fields of a run of questions answered one after another."""

    burst_index: int = Field(default=0, ge=0)
    correct_count: int = Field(default=0, ge=0)
    used_question_ids: Tuple[str, ...] = ()
    size: int = Field(default=3, ge=1)

    @property
    def finished(self) -> bool:
        return self.burst_index >= self.size

    def answered(self, is_correct: bool) -> "QuestionRun":
        return self.model_copy(
            update={
                "burst_index": self.burst_index + 1,
                "correct_count": self.correct_count + (1 if is_correct else 0),
            }
        )

    def with_served(self, question_id: str) -> "QuestionRun":
        if question_id in self.used_question_ids:
            return self
        return self.model_copy(update={"used_question_ids": self.used_question_ids + (question_id,)})


# panic
class AskLevel(_Step):
    step: Literal["ask_level"] = "ask_level"


class AskTopic(_Step):
    step: Literal["ask_topic"] = "ask_topic"


class PanicPlan(_Step):
    step: Literal["plan"] = "plan"


class MicroModule(_Step):
    step: Literal["micro_module"] = "micro_module"


class Burst(QuestionRun):
    step: Literal["burst"] = "burst"


class MomentumMenu(_Step):
    step: Literal["momentum_menu"] = "momentum_menu"
    last_score: Optional[int] = None


# stress and exam prep
class AskGrade(_Step):
    step: Literal["ask_grade"] = "ask_grade"


class AskStressLevel(_Step):
    step: Literal["ask_stress_level"] = "ask_stress_level"


class AskSubject(_Step):
    step: Literal["ask_subject"] = "ask_subject"


class AskProblemDetails(_Step):
    step: Literal["ask_problem_details"] = "ask_problem_details"


class AskExamDate(_Step):
    step: Literal["ask_exam_date"] = "ask_exam_date"


class PlanDecision(_Step):
    step: Literal["plan_decision"] = "plan_decision"
    hours_away: float = 0.0


class AskPreferredTime(_Step):
    step: Literal["ask_preferred_time"] = "ask_preferred_time"
    hours_away: float = 0.0


class PlanAction(_Step):
    step: Literal["plan_action"] = "plan_action"
    plan: Literal["short", "long"] = "short"


class Lesson(_Step):
    step: Literal["lesson"] = "lesson"


class Practice(QuestionRun):
    step: Literal["practice"] = "practice"


class PracticeContinue(_Step):
    step: Literal["practice_continue"] = "practice_continue"


# confidence
class AskReason(_Step):
    step: Literal["ask_reason"] = "ask_reason"


class AskPreConfidence(_Step):
    step: Literal["ask_pre_confidence"] = "ask_pre_confidence"


class GenerateSupport(_Step):
    step: Literal["generate_support"] = "generate_support"


class ShowLadder(_Step):
    step: Literal["show_ladder"] = "show_ladder"
    support_message: str = ""


class EasyLadder(QuestionRun):
    step: Literal["r1_easy"] = "r1_easy"


class MediumLadder(_Step):
    step: Literal["r3_medium"] = "r3_medium"


class AskPostConfidence(_Step):
    step: Literal["ask_post_confidence"] = "ask_post_confidence"


class Complete(_Step):
    step: Literal["complete"] = "complete"
    delta: int = 0
    outcome: Literal["improved", "worsened", "unchanged"] = "unchanged"


SessionState = Annotated[
    Union[
        NeedsReset,
        AskLevel,
        AskTopic,
        PanicPlan,
        MicroModule,
        Burst,
        MomentumMenu,
        AskGrade,
        AskStressLevel,
        AskSubject,
        AskProblemDetails,
        AskExamDate,
        PlanDecision,
        AskPreferredTime,
        PlanAction,
        Lesson,
        Practice,
        PracticeContinue,
        AskReason,
        AskPreConfidence,
        GenerateSupport,
        ShowLadder,
        EasyLadder,
        MediumLadder,
        AskPostConfidence,
        Complete,
    ],
    Field(discriminator="step"),
]

_STATE_ADAPTER: TypeAdapter = TypeAdapter(SessionState)


def parse_session_state(raw: Any) -> SessionState:
    """Decode stored state; anything unrecognised becomes ``NeedsReset``."""
    if isinstance(raw, _Step):
        return raw
    data = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw or "{}")
        except json.JSONDecodeError:
            return NeedsReset(unknown_step=None)
    if not isinstance(data, dict):
        return NeedsReset(unknown_step=None)
    try:
        return _STATE_ADAPTER.validate_python(data)
    except ValidationError:
        step = data.get("step")
        return NeedsReset(unknown_step=str(step) if step is not None else None)


def dump_session_state(state: SessionState) -> str:
    return json.dumps(state.model_dump(mode="json"), ensure_ascii=False)


class Session(BaseModel):
    """One run through a flow. Immutable: flows return modified copies."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    flow_type: FlowType
    started_at: datetime
    ended_at: Optional[datetime] = None
    state: SessionState = Field(default_factory=NeedsReset)
    version: int = 0
    topic: Optional[str] = None
    panic_level: Optional[int] = None
    stress_level: Optional[int] = None
    reason: Optional[str] = None
    pre_confidence: Optional[int] = None
    post_confidence: Optional[int] = None
    ladder_action: Optional[str] = None
    exam_date: Optional[datetime] = None
    preferred_time: Optional[str] = None
    requested_subject: Optional[str] = None
    problem_details: Optional[str] = None
    burst_score: Optional[int] = None
    next_action: Optional[str] = None
    plan_opt_in: Optional[bool] = None
    reminder_opt_in: bool = False

    @field_validator("state", mode="before")
    @classmethod
    def _decode_state(cls, value: Any) -> Any:
        return parse_session_state(value)

    @property
    def active(self) -> bool:
        return self.ended_at is None

    def moved(self, state: SessionState, **fields: Any) -> "Session":
        """Return a copy in ``state`` with any denormalised ``fields`` updated."""
        return self.model_copy(update={"state": state, **fields})


# ------------------------------------------------------------------
# transport
# ------------------------------------------------------------------
class WebhookBody(BaseModel):
    """Inbound message from the transport. Both fields are checked by the orchestrator."""

    user_identity: Optional[str] = None
    message: Optional[str] = None


class WebhookReply(BaseModel):
    status: Literal["ok", "error"] = "ok"
    reply: str
