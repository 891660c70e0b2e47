import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from tot_workbench.collaborators import EvaluationResult, ThoughtEvaluator, ThoughtGenerator
from tot_workbench.config import SearchConfig
from tot_workbench.tree import Evaluation, ThoughtNode


class StubGenerator(ThoughtGenerator):
    """Returns fixed candidates; ``script`` maps a node thought to its candidates."""

    def __init__(self, candidates: Optional[List[str]] = None, script: Optional[Callable[[ThoughtNode], List[str]]] = None, delay: float = 0.0):
        self.candidates = candidates if candidates is not None else ["A", "B"]
        self.script = script
        self.delay = delay
        self.calls: List[str] = []
        self.closed = False

    async def generate(self, node, config, count):
        self.calls.append(node.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.script is not None:
            return self.script(node)
        return list(self.candidates)

    async def close(self):
        self.closed = True


class StubEvaluator(ThoughtEvaluator):
    """Evaluates with ``rule(node)``; defaults to maybe/0.5 for everything."""

    def __init__(self, rule: Optional[Callable[[ThoughtNode], EvaluationResult]] = None, delay: float = 0.0):
        self.rule = rule or (lambda node: EvaluationResult(Evaluation.MAYBE, 0.5, "stub"))
        self.delay = delay
        self.calls: List[str] = []
        self.closed = False

    async def evaluate(self, node, config):
        self.calls.append(node.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.rule(node)

    async def close(self):
        self.closed = True


def verdict(evaluation: str, confidence: float, reasoning: str = "stub") -> EvaluationResult:
    return EvaluationResult(Evaluation(evaluation), confidence, reasoning)


def sure_for(thought: str, depth: int = 1) -> Callable[[ThoughtNode], EvaluationResult]:
    def rule(node):
        if node.thought == thought and node.depth == depth:
            return verdict("sure", 1.0)
        return verdict("maybe", 0.5)
    return rule


def by_thought(table: Dict[str, EvaluationResult], default: Optional[EvaluationResult] = None):
    default = default or verdict("maybe", 0.5)
    return lambda node: table.get(node.thought, default)


@pytest.fixture
def make_config():
    def _make(**overrides) -> SearchConfig:
        params = dict(
            problem="reach 24 from 4,1,8,7",
            task_type="game-24",
            search_method="bfs",
            max_depth=2,
            candidates_per_step=2,
            max_nodes=10,
        )
        params.update(overrides)
        return SearchConfig(**params)
    return _make
