# backend/conftest.py
import asyncio

import pytest
from langchain_core.messages import AIMessage

from cases import CaseCatalog
from evaluator import Evaluator, KeywordEvaluator
from models import Rubric


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenClassifier:
    """Stands in for a chat model whose remote call always fails."""

    def __init__(self, exc: Exception = None):
        self.exc = exc or ConnectionError("classifier unreachable")
        self.calls = 0

    async def ainvoke(self, messages, **kwargs):
        self.calls += 1
        raise self.exc


class RecordingClassifier:
    """Returns a canned reply and keeps the messages it was sent."""

    def __init__(self, reply: str):
        self.reply = reply
        self.calls = []

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(messages)
        return AIMessage(content=self.reply)


class SlowKeywordEvaluator(Evaluator):
    """Keyword verdicts that yield to the loop first, like a network call."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.inner = KeywordEvaluator()

    async def evaluate_phase(self, phase, text, rubric):
        await asyncio.sleep(self.delay)
        return self.inner.evaluate(text, rubric)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> CaseCatalog:
    return CaseCatalog()


@pytest.fixture
def kafka_rubric() -> Rubric:
    return Rubric(
        diagnosis_phrase="consumer count exceeds partition count",
        keywords=["partition", "consumer", "idle"],
        solution_description="Only one consumer per partition within a group.",
        example_fix_descriptions=["Add partitions, then scale consumers to match"],
    )


@pytest.fixture
def run():
    return asyncio.run
