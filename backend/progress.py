# backend/progress.py

import logging
import time
from typing import Callable, Dict, Optional

from cases import CaseCatalog
from evaluator import Evaluator
from graph import build_submission_graph
from models import CaseProgress, EvaluationVerdict, Phase
from scoring import estimate_score

logger = logging.getLogger("detective_progress")


class ProgressError(Exception):
    pass


class InvalidPhaseError(ProgressError):
    """A phase was submitted out of order."""


class CaseClosedError(ProgressError):
    """The case is already solved or abandoned."""


class ProgressTracker:
    """
    Investigation state machine for one player's CaseProgress records.

    NotStarted -> Investigating -> RootCausePending <-> RootCauseCorrect
    -> SolutionPending <-> Solved, with GaveUp reachable from any
    non-terminal state. Solved and GaveUp are terminal.

    Not safe for concurrent use; callers serialize access per player.
    """

    def __init__(
        self,
        catalog: CaseCatalog,
        evaluator: Optional[Evaluator] = None,
        records: Optional[Dict[str, CaseProgress]] = None,
        clock: Optional[Callable[[], float]] = None,
        graph=None,
    ):
        if graph is None and evaluator is None:
            raise ValueError("either an evaluator or a compiled submission graph is required")
        self.catalog = catalog
        self.records: Dict[str, CaseProgress] = records if records is not None else {}
        self.clock = clock or time.time
        self.graph = graph or build_submission_graph(evaluator, clock=self.clock)

    def get(self, case_id: str) -> CaseProgress:
        progress = self.records.get(case_id)
        if progress is None:
            progress = CaseProgress()
            self.records[case_id] = progress
        return progress

    # ---------------- Investigation ----------------

    def begin_investigation(self, case_id: str) -> CaseProgress:
        progress = self.get(case_id)
        if progress.start_time is None:
            progress.start_time = self.clock()
            logger.info("Investigation started: case_id=%s", case_id)
        return progress

    def reveal_clue(self, case_id: str, total_clues: Optional[int] = None) -> int:
        if total_clues is None:
            total_clues = self.catalog.get_clue_count(case_id)
        progress = self.get(case_id)
        if progress.closed:
            return progress.clues_revealed
        if progress.clues_revealed < total_clues:
            progress.clues_revealed += 1
            logger.info(
                "Clue revealed: case_id=%s clues=%d/%d",
                case_id,
                progress.clues_revealed,
                total_clues,
            )
        return progress.clues_revealed

    def record_hint_view(self, case_id: str, hint_id: str) -> int:
        progress = self.get(case_id)
        hint_id = str(hint_id)
        if not progress.closed and hint_id not in progress.hints_viewed:
            progress.hints_viewed.append(hint_id)
            logger.info(
                "Hint viewed: case_id=%s hint_id=%s total_hints=%d",
                case_id,
                hint_id,
                len(progress.hints_viewed),
            )
        return len(progress.hints_viewed)

    # ---------------- Submissions ----------------

    async def submit_root_cause(self, case_id: str, text: str) -> EvaluationVerdict:
        return await self._submit(case_id, Phase.ROOT_CAUSE, text)

    async def submit_solution(self, case_id: str, text: str) -> EvaluationVerdict:
        return await self._submit(case_id, Phase.SOLUTION, text)

    def _check_phase(self, case_id: str, progress: CaseProgress, phase: Phase) -> None:
        if progress.closed:
            raise CaseClosedError(f"case {case_id!r} is already {progress.state.value}")
        if phase == Phase.SOLUTION and not progress.root_cause_correct:
            raise InvalidPhaseError(
                f"case {case_id!r}: a solution cannot be submitted before the root cause is identified"
            )
        if phase == Phase.ROOT_CAUSE and progress.root_cause_correct:
            raise InvalidPhaseError(f"case {case_id!r}: the root cause is already identified")

    async def _submit(self, case_id: str, phase: Phase, text: str) -> EvaluationVerdict:
        phase = Phase(phase)
        case = self.catalog.get_case(case_id)
        progress = self.get(case_id)
        self._check_phase(case_id, progress, phase)

        result = await self.graph.ainvoke(
            {
                "case_id": case_id,
                "phase": phase,
                "text": text,
                "rubric": case.rubric,
                "difficulty": case.difficulty,
                "progress": progress,
            }
        )
        self.records[case_id] = result["progress"]
        return result["verdict"]

    # ---------------- Exits ----------------

    def give_up(self, case_id: str) -> None:
        progress = self.get(case_id)
        if progress.solved:
            # Solved is terminal; it never turns into a give-up.
            logger.info("Give up ignored for solved case: case_id=%s", case_id)
            return
        progress.gave_up = True
        logger.info(
            "Case abandoned: case_id=%s root_cause_attempts=%d",
            case_id,
            progress.root_cause_attempts,
        )

    def reset_all(self) -> None:
        count = len(self.records)
        self.records.clear()
        logger.info("All case progress reset; records_cleared=%d", count)

    def estimate_score(self, case_id: str) -> int:
        difficulty = self.catalog.get_difficulty(case_id)
        return estimate_score(self.get(case_id), difficulty, self.clock())
