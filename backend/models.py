# backend/models.py
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


class Verdict(str, Enum):
    CORRECT = "correct"
    PARTIAL = "partial"
    INCORRECT = "incorrect"


class Phase(IntEnum):
    ROOT_CAUSE = 1
    SOLUTION = 2


class ProgressState(str, Enum):
    NOT_STARTED = "not_started"
    INVESTIGATING = "investigating"
    ROOT_CAUSE_PENDING = "root_cause_pending"
    ROOT_CAUSE_CORRECT = "root_cause_correct"
    SOLUTION_PENDING = "solution_pending"
    SOLVED = "solved"
    GAVE_UP = "gave_up"


# ---------------- Case content (read-only) ----------------

class Rubric(BaseModel):
    """Authored answer key for one case."""

    model_config = ConfigDict(frozen=True)

    diagnosis_phrase: str
    keywords: List[str] = Field(default_factory=list)
    solution_description: str = ""
    example_fix_descriptions: List[str] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def _unique_keywords(cls, v: List[str]) -> List[str]:
        return _dedupe([k for k in v if k and k.strip()])


class Clue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    type: str  # "metrics", "logs", "code", "config" or "testimony"
    hint: Optional[str] = None


class CaseFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    subtitle: str = ""
    difficulty: str  # "junior", "mid", "senior" or "principal"
    category: str
    # Two clues are on the table from the start.
    clues: List[Clue] = Field(min_length=2)
    rubric: Rubric
    prevention: List[str] = Field(default_factory=list)

    @property
    def total_clues(self) -> int:
        return len(self.clues)


# ---------------- Evaluation ----------------

class EvaluationVerdict(BaseModel):
    verdict: Verdict
    explanation: str = ""
    # Set semantics; order carries no meaning.
    matched_concepts: List[str] = Field(default_factory=list)

    @field_validator("matched_concepts")
    @classmethod
    def _unique_concepts(cls, v: List[str]) -> List[str]:
        return _dedupe(v)

    @property
    def correct(self) -> bool:
        return self.verdict is Verdict.CORRECT

    @property
    def partial(self) -> bool:
        return self.verdict is Verdict.PARTIAL


# ---------------- Durable progress ----------------

class CaseProgress(BaseModel):
    """One record per player x case. Mutated only by ProgressTracker."""

    clues_revealed: int = 2
    root_cause_attempts: int = 0
    root_cause_correct: bool = False
    submitted_root_cause: Optional[str] = None
    solution_attempts: int = 0
    solved: bool = False
    gave_up: bool = False
    hints_viewed: List[str] = Field(default_factory=list)
    start_time: Optional[float] = None  # epoch seconds
    score: Optional[int] = None

    @property
    def closed(self) -> bool:
        return self.solved or self.gave_up

    @property
    def state(self) -> ProgressState:
        if self.gave_up:
            return ProgressState.GAVE_UP
        if self.solved:
            return ProgressState.SOLVED
        if self.root_cause_correct:
            if self.solution_attempts:
                return ProgressState.SOLUTION_PENDING
            return ProgressState.ROOT_CAUSE_CORRECT
        if self.root_cause_attempts:
            return ProgressState.ROOT_CAUSE_PENDING
        if self.start_time is not None:
            return ProgressState.INVESTIGATING
        return ProgressState.NOT_STARTED


# ---------------- Caller-facing shapes ----------------

class SubmissionRequest(BaseModel):
    case_id: str = Field(min_length=1)
    phase: Phase
    text: str

    @field_validator("text")
    @classmethod
    def _non_empty_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("submission text is required")
        return v


class SubmissionResult(BaseModel):
    verdict: Verdict
    explanation: str
    matched_concepts: List[str]
    feedback: str
    # Only set for a non-correct verdict.
    hint: str = ""
    # Only set when this submission solved the case.
    score: Optional[int] = None
    root_cause_correct: bool = False
    solved: bool = False


class ScoreEstimate(BaseModel):
    score: int
    elapsed_seconds: int


class PlayerStats(BaseModel):
    solved: int
    in_progress: int
    total_cases: int
    percent_complete: int
    solved_cases: List[str]
