# backend/service.py
"""
Caller-facing operations for the detective game.

A thin HTTP (or any other) layer calls these coroutines; each one loads the
player's progress map, applies one state-machine operation under that
player's lock, and saves the map back.
"""
import asyncio
import logging
import time
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from cases import CaseCatalog
from evaluator import Evaluator, build_evaluator
from graph import build_submission_graph
from models import (
    CaseFile,
    CaseProgress,
    EvaluationVerdict,
    Phase,
    PlayerStats,
    ScoreEstimate,
    SubmissionRequest,
    SubmissionResult,
    Verdict,
)
from progress import InvalidPhaseError, ProgressTracker
from scoring import elapsed_seconds, estimate_score
from store import InMemoryProgressStore, ProgressStore

logger = logging.getLogger("detective_service")


# --- FEEDBACK HELPERS ---

def generate_hint(attempt_count: int, clues_revealed: int, total_clues: int) -> str:
    """Nudge shown after a miss: unseen evidence first, then generic pointers."""
    if clues_revealed < total_clues:
        remaining = total_clues - clues_revealed
        return (
            f"Hint: There are {remaining} more clues to discover. "
            "Try investigating more evidence."
        )
    if attempt_count == 1:
        return "Hint: Focus on what the symptoms have in common. What pattern connects them?"
    if attempt_count == 2:
        return (
            "Hint: Look at the code and configuration clues closely. "
            "Is there something that should be there but isn't?"
        )
    if attempt_count >= 3:
        return (
            "Hint: Consider the timeline and the testimony. "
            "When did things start going wrong, and what changed?"
        )
    return ""


def format_feedback(phase: Phase, result: EvaluationVerdict) -> str:
    explanation = result.explanation.strip()
    if result.verdict is Verdict.CORRECT:
        prefix = "Case Closed!" if phase == Phase.SOLUTION else "Root cause identified!"
        return f"{prefix} {explanation}".strip()
    if result.verdict is Verdict.PARTIAL:
        return f"You're on the right track! {explanation}".strip()
    return explanation or "That doesn't match the evidence. Review the clues and try again."


# --- SERVICE ---

class DetectiveService:
    def __init__(
        self,
        catalog: Optional[CaseCatalog] = None,
        store: Optional[ProgressStore] = None,
        evaluator: Optional[Evaluator] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.catalog = catalog or CaseCatalog()
        self.store = store or InMemoryProgressStore()
        self.clock = clock or time.time
        self.graph = build_submission_graph(evaluator or build_evaluator(), clock=self.clock)
        # An entry lives only while some request holds or awaits the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def _tracker(self, player_id: str) -> AsyncIterator[ProgressTracker]:
        """Read-modify-write of one player's records under a single writer."""
        lock = self._locks.setdefault(player_id, asyncio.Lock())
        async with lock:
            tracker = ProgressTracker(
                self.catalog,
                records=self.store.load(player_id),
                clock=self.clock,
                graph=self.graph,
            )
            yield tracker
            self.store.save(player_id, tracker.records)

    async def get_progress(self, player_id: str, case_id: str) -> CaseProgress:
        self.catalog.get_case(case_id)
        records = self.store.load(player_id)
        return records.get(case_id) or CaseProgress()

    async def begin_investigation(self, player_id: str, case_id: str) -> CaseProgress:
        self.catalog.get_case(case_id)
        async with self._tracker(player_id) as tracker:
            return tracker.begin_investigation(case_id).model_copy(deep=True)

    async def reveal_clue(self, player_id: str, case_id: str) -> int:
        total = self.catalog.get_clue_count(case_id)
        async with self._tracker(player_id) as tracker:
            return tracker.reveal_clue(case_id, total)

    async def record_hint_view(self, player_id: str, case_id: str, hint_id: str) -> int:
        case = self.catalog.get_case(case_id)
        hint_id = str(hint_id)
        positions = {c.id: i for i, c in enumerate(case.clues) if c.hint}
        if hint_id not in positions:
            raise ValueError(f"case {case_id!r} has no hint {hint_id!r}")
        async with self._tracker(player_id) as tracker:
            # Hints hang off clues; only revealed clues offer one.
            if positions[hint_id] >= tracker.get(case_id).clues_revealed:
                raise ValueError(f"case {case_id!r}: clue {hint_id!r} has not been revealed")
            return tracker.record_hint_view(case_id, hint_id)

    async def check_submission(
        self, player_id: str, case_id: str, phase: int, text: str
    ) -> SubmissionResult:
        req = SubmissionRequest(case_id=case_id, phase=phase, text=text)
        case = self.catalog.get_case(req.case_id)

        async with self._tracker(player_id) as tracker:
            if req.phase == Phase.SOLUTION:
                result = await tracker.submit_solution(req.case_id, req.text)
            else:
                result = await tracker.submit_root_cause(req.case_id, req.text)
            progress = tracker.get(req.case_id).model_copy(deep=True)

        hint = ""
        if not result.correct:
            attempts = (
                progress.solution_attempts
                if req.phase == Phase.SOLUTION
                else progress.root_cause_attempts
            )
            hint = generate_hint(attempts, progress.clues_revealed, case.total_clues)

        solved_now = req.phase == Phase.SOLUTION and result.correct
        logger.info(
            "Submission checked: player_id=%s case_id=%s phase=%d verdict=%s solved=%s",
            player_id,
            req.case_id,
            int(req.phase),
            result.verdict.value,
            solved_now,
        )
        return SubmissionResult(
            verdict=result.verdict,
            explanation=result.explanation,
            matched_concepts=list(result.matched_concepts),
            feedback=format_feedback(req.phase, result),
            hint=hint,
            score=progress.score if solved_now else None,
            root_cause_correct=progress.root_cause_correct,
            solved=progress.solved,
        )

    async def give_up(self, player_id: str, case_id: str) -> None:
        self.catalog.get_case(case_id)
        async with self._tracker(player_id) as tracker:
            tracker.give_up(case_id)

    async def estimate_score(self, player_id: str, case_id: str) -> ScoreEstimate:
        difficulty = self.catalog.get_difficulty(case_id)
        progress = await self.get_progress(player_id, case_id)
        now = self.clock()
        return ScoreEstimate(
            score=estimate_score(progress, difficulty, now),
            elapsed_seconds=elapsed_seconds(progress, now),
        )

    async def reveal_solution(self, player_id: str, case_id: str) -> CaseFile:
        progress = await self.get_progress(player_id, case_id)
        if not progress.closed:
            raise InvalidPhaseError(
                f"case {case_id!r}: the solution is available once the case is solved or given up"
            )
        return self.catalog.get_case(case_id)

    async def get_stats(self, player_id: str) -> PlayerStats:
        records = self.store.load(player_id)
        solved_cases = [cid for cid, p in records.items() if p.solved]
        in_progress = sum(
            1
            for p in records.values()
            if not p.closed and (p.root_cause_attempts or p.solution_attempts)
        )
        total = len(self.catalog)
        percent = int(len(solved_cases) * 100 / total + 0.5) if total else 0
        return PlayerStats(
            solved=len(solved_cases),
            in_progress=in_progress,
            total_cases=total,
            percent_complete=percent,
            solved_cases=solved_cases,
        )

    async def reset_all(self, player_id: str) -> None:
        async with self._tracker(player_id) as tracker:
            tracker.reset_all()
        self.store.reset(player_id)
        logger.info("Player progress reset: player_id=%s", player_id)
