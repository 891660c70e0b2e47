"""
Entry point of the thought-tree search engine.

``run_search`` validates the configuration, builds the root, runs the chosen
strategy and turns its outcome into a ``SearchResult``. Only
``ConfigurationError`` escapes; budget exhaustion, collaborator degradation
and cancellation are reflected in the result instead.
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from . import events
from .collaborators import ThoughtEvaluator, ThoughtGenerator, create_default_collaborators
from .config import ConfigurationError, SearchConfig
from .events import ProgressSink, SafeSink, SearchStep
from .fallback import select_best_path
from .strategies import SearchOutcome, create_strategy
from .tree import ThoughtNode, ThoughtTree


logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Everything a caller or visualization client needs from one run."""
    tree: ThoughtTree
    best_path: List[ThoughtNode]
    final_answer: str
    total_nodes: int
    explored_nodes: int
    task_type: str
    search_method: str
    steps: List[SearchStep] = field(default_factory=list)
    solved: bool = False
    cancelled: bool = False
    budget_exhausted: bool = False
    total_time: int = 0  # milliseconds

    @property
    def search_tree(self) -> ThoughtNode:
        return self.tree.root

    def to_dict(self) -> Dict[str, Any]:
        selected = {node.id for node in self.best_path}
        best_path = []
        for node in self.best_path:
            data = node.to_dict()
            data["isSelected"] = True
            best_path.append(data)
        return {
            "taskType": self.task_type,
            "searchMethod": self.search_method,
            "totalNodes": self.total_nodes,
            "exploredNodes": self.explored_nodes,
            "bestPath": best_path,
            "finalAnswer": self.final_answer,
            "searchTree": self.tree.to_dict(selected),
            "totalTime": self.total_time,
            "searchSteps": [step.to_dict() for step in self.steps],
            "solved": self.solved,
            "cancelled": self.cancelled,
            "budgetExhausted": self.budget_exhausted,
        }


async def _await_cancelled(task: asyncio.Future) -> Optional[SearchOutcome]:
    """Cancel ``task`` and wait for it; returns its outcome if it had already finished."""
    task.cancel()
    try:
        return await task
    except asyncio.CancelledError:
        return None


async def run_search(
    problem: Optional[str],
    config: Optional[SearchConfig] = None,
    *,
    generator: Optional[ThoughtGenerator] = None,
    evaluator: Optional[ThoughtEvaluator] = None,
    sink: Optional[ProgressSink] = None,
    cancel_event: Optional[asyncio.Event] = None,
    timeout: Optional[float] = None,
) -> SearchResult:
    """Search the thought tree for ``problem``.

    Args:
        problem: Problem statement; ``None`` keeps ``config.problem``.
        config: Search parameters. Defaults are used when omitted.
        generator / evaluator: Collaborators. Chat-backed defaults are built
            (and closed afterwards) when omitted.
        sink: Optional non-blocking progress sink.
        cancel_event: Setting it stops the search; a partial result with
            ``cancelled=True`` is returned.
        timeout: Seconds after which the search is cancelled the same way.

    Raises:
        ConfigurationError: invalid configuration, before any collaborator call.
    """
    if config is None:
        if problem is None:
            raise ConfigurationError("problem is required")
        config = SearchConfig(problem=problem)
    elif problem is not None and problem != config.problem:
        config = replace(config, problem=problem)
    if timeout is not None and timeout <= 0:
        raise ConfigurationError(f"timeout must be positive, got {timeout}")

    owned = []
    if generator is None or evaluator is None:
        try:
            default_generator, default_evaluator = create_default_collaborators()
        except ValueError as e:
            raise ConfigurationError(str(e))
        if generator is None:
            generator = default_generator
            owned.append(default_generator)
        if evaluator is None:
            evaluator = default_evaluator
            owned.append(default_evaluator)

    try:
        return await _execute(config, generator, evaluator, sink, cancel_event, timeout)
    finally:
        for collaborator in owned:
            await collaborator.close()


async def _execute(
    config: SearchConfig,
    generator: ThoughtGenerator,
    evaluator: ThoughtEvaluator,
    sink: Optional[ProgressSink],
    cancel_event: Optional[asyncio.Event],
    timeout: Optional[float],
) -> SearchResult:
    started = time.monotonic()
    notifier = SafeSink(sink)
    tree = ThoughtTree(config.problem)
    steps: List[SearchStep] = []
    strategy = create_strategy(config.search_method, steps)

    logger.info(f"🌳 Starting {config.search_method.value.upper()} thought search")
    logger.info(f"📋 Problem: {config.problem}")
    logger.info(f"🎯 max_depth={config.max_depth}, candidates_per_step={config.candidates_per_step}, max_nodes={config.max_nodes}")
    notifier.emit(
        events.START,
        message="Building the thought tree...",
        taskType=config.task_type.value,
        searchMethod=config.search_method.value,
        maxDepth=config.max_depth,
        candidatesPerStep=config.candidates_per_step,
        maxNodes=config.max_nodes,
    )

    search_task = asyncio.ensure_future(strategy.explore(tree, config, generator, evaluator, sink))
    waiters = []
    if cancel_event is not None:
        waiters.append(asyncio.ensure_future(cancel_event.wait()))

    cancelled = False
    try:
        done, _ = await asyncio.wait([search_task, *waiters], timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if search_task in done:
            outcome = search_task.result()
        else:
            reason = "cancel signal" if any(w in done for w in waiters) else f"timeout of {timeout}s"
            logger.info(f"🛑 Stopping search on {reason}")
            outcome = await _await_cancelled(search_task)
            cancelled = outcome is None
            outcome = outcome or SearchOutcome()
    except asyncio.CancelledError:
        await _await_cancelled(search_task)
        raise
    finally:
        for waiter in waiters:
            waiter.cancel()

    if outcome.solution is not None:
        best_path = tree.path_to(outcome.solution)
    else:
        logger.info("🔎 No sure thought found, selecting best leaf")
        best_path = select_best_path(tree)
    best = best_path[-1]

    total_time = int((time.monotonic() - started) * 1000)
    steps.append(SearchStep(
        step_index=len(steps),
        action="complete",
        node_id=best.id,
        thought=best.thought,
        evaluation=best.evaluation.value,
        message="Search cancelled" if cancelled else f"Search complete: {'solved' if outcome.solution else 'best leaf selected'}",
    ))
    notifier.emit(
        events.CANCELLED if cancelled else events.COMPLETE,
        nodeId=best.id,
        finalAnswer=best.thought,
        solved=outcome.solution is not None,
        totalNodes=len(tree),
        exploredNodes=strategy.explored_nodes,
    )
    logger.info(f"🏁 Finished in {total_time}ms: {len(tree)} nodes, {strategy.explored_nodes} explored, answer from {best.id}")

    return SearchResult(
        tree=tree,
        best_path=best_path,
        final_answer=best.thought,
        total_nodes=len(tree),
        explored_nodes=strategy.explored_nodes,
        task_type=config.task_type.value,
        search_method=config.search_method.value,
        steps=steps,
        solved=outcome.solution is not None,
        cancelled=cancelled,
        budget_exhausted=outcome.budget_exhausted,
        total_time=total_time,
    )
