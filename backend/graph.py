# backend/graph.py

import logging
import time
from typing import Callable, Optional, TypedDict

from langgraph.graph import END, StateGraph

from evaluator import Evaluator
from models import CaseProgress, EvaluationVerdict, Phase, Rubric
from scoring import final_score

# Logger for the submission pipeline
logger = logging.getLogger("detective_graph")


class SubmissionState(TypedDict, total=False):
    case_id: str
    phase: Phase
    text: str
    rubric: Rubric
    difficulty: str
    progress: CaseProgress
    verdict: EvaluationVerdict


# ---------------- Helpers ----------------

def _route_verdict(state: SubmissionState) -> str:
    if not state["verdict"].correct:
        return END
    if state["phase"] == Phase.SOLUTION:
        return "close_case"
    return "confirm_root_cause"


def build_submission_graph(
    evaluator: Evaluator,
    clock: Optional[Callable[[], float]] = None,
):
    """
    record_attempt -> evaluate -> (confirm_root_cause | close_case | END)

    Every node returns a fresh CaseProgress; the caller decides when to
    commit it. Phase gating happens before the graph is entered.
    """
    clock = clock or time.time

    def record_attempt(state: SubmissionState) -> SubmissionState:
        progress = state["progress"]
        if state["phase"] == Phase.SOLUTION:
            update = {"solution_attempts": progress.solution_attempts + 1}
        else:
            update = {"root_cause_attempts": progress.root_cause_attempts + 1}
        return {"progress": progress.model_copy(update=update, deep=True)}

    async def evaluate(state: SubmissionState) -> SubmissionState:
        verdict = await evaluator.evaluate_phase(state["phase"], state["text"], state["rubric"])
        logger.info(
            "Submission evaluated: case_id=%s phase=%s verdict=%s matched=%d",
            state.get("case_id", "unknown"),
            state["phase"].name,
            verdict.verdict.value,
            len(verdict.matched_concepts),
        )
        return {"verdict": verdict}

    def confirm_root_cause(state: SubmissionState) -> SubmissionState:
        progress = state["progress"].model_copy(
            update={"root_cause_correct": True, "submitted_root_cause": state["text"]},
            deep=True,
        )
        return {"progress": progress}

    def close_case(state: SubmissionState) -> SubmissionState:
        progress = state["progress"]
        score = final_score(progress, state.get("difficulty"), clock())
        progress = progress.model_copy(update={"solved": True, "score": score}, deep=True)
        logger.info(
            "Case closed: case_id=%s score=%d root_cause_attempts=%d solution_attempts=%d",
            state.get("case_id", "unknown"),
            score,
            progress.root_cause_attempts,
            progress.solution_attempts,
        )
        return {"progress": progress}

    workflow = StateGraph(SubmissionState)
    workflow.add_node("record_attempt", record_attempt)
    workflow.add_node("evaluate", evaluate)
    workflow.add_node("confirm_root_cause", confirm_root_cause)
    workflow.add_node("close_case", close_case)

    workflow.set_entry_point("record_attempt")
    workflow.add_edge("record_attempt", "evaluate")
    workflow.add_conditional_edges(
        "evaluate",
        _route_verdict,
        {"confirm_root_cause": "confirm_root_cause", "close_case": "close_case", END: END},
    )
    workflow.add_edge("confirm_root_cause", END)
    workflow.add_edge("close_case", END)
    logger.debug("Submission graph compiled")
    return workflow.compile()
