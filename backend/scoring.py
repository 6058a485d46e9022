# backend/scoring.py
import math
from typing import Dict, Optional

from models import CaseProgress

BASE_SCORE = 1000
MIN_SCORE = 100

SECONDS_PER_TIME_POINT = 5
MAX_TIME_PENALTY = 300
FREE_CLUES = 2
CLUE_PENALTY = 50
HINT_PENALTY = 25
ATTEMPT_PENALTY = 100

DIFFICULTY_MULTIPLIERS: Dict[str, float] = {
    "junior": 1.0,
    "mid": 1.5,
    "senior": 2.0,
    "principal": 3.0,
}


def difficulty_multiplier(difficulty: Optional[str]) -> float:
    return DIFFICULTY_MULTIPLIERS.get((difficulty or "").strip().lower(), 1.0)


def elapsed_seconds(progress: CaseProgress, now: float) -> int:
    if progress.start_time is None:
        return 0
    return max(0, int(now - progress.start_time))


def failed_attempts(progress: CaseProgress, final_attempt_counted: bool) -> int:
    """
    Root-cause attempts that count against the score.

    On the solving transition the one successful attempt is excused. For a
    live estimate it is only excused once the root cause has been found;
    before that every attempt so far counts as failed.
    """
    if final_attempt_counted or progress.root_cause_correct:
        return max(0, progress.root_cause_attempts - 1)
    return progress.root_cause_attempts


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_score(
    progress: CaseProgress,
    difficulty: Optional[str],
    now: float,
    final_attempt_counted: bool,
) -> int:
    """
    Deterministic score from a progress snapshot. No side effects.

    1000 minus time (1 pt per 5s, capped at 300), clues beyond the first two
    (50 each), distinct hints viewed (25 each) and failed root-cause attempts
    (100 each); floored at 100, then scaled by the difficulty multiplier.
    """
    time_penalty = min(elapsed_seconds(progress, now) // SECONDS_PER_TIME_POINT, MAX_TIME_PENALTY)
    clue_penalty = CLUE_PENALTY * max(0, progress.clues_revealed - FREE_CLUES)
    hint_penalty = HINT_PENALTY * len(set(progress.hints_viewed))
    attempt_penalty = ATTEMPT_PENALTY * failed_attempts(progress, final_attempt_counted)

    raw = BASE_SCORE - time_penalty - clue_penalty - hint_penalty - attempt_penalty
    return _round_half_up(max(MIN_SCORE, raw) * difficulty_multiplier(difficulty))


def final_score(progress: CaseProgress, difficulty: Optional[str], now: float) -> int:
    return compute_score(progress, difficulty, now, final_attempt_counted=True)


def estimate_score(progress: CaseProgress, difficulty: Optional[str], now: float) -> int:
    """Score "as if you stopped now"; for live display only, never stored."""
    if progress.score is not None:
        return progress.score
    return compute_score(progress, difficulty, now, final_attempt_counted=False)
