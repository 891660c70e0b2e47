"""
Thought-tree search strategies: breadth-first, depth-first and beam.

All three share one expansion rule, implemented once in ``SearchStrategy``:

- the node budget (``max_nodes``) caps the tree size, counting the root;
- nodes at ``max_depth`` are finalized as leaves, never expanded;
- the first ``sure`` thought ends the whole search;
- ``impossible`` thoughts stay in the tree but never join the frontier.

Strategies differ only in how they hold and order the frontier.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Type

from .collaborators import EvaluationResult, ThoughtEvaluator, ThoughtGenerator, clean_candidates
from .config import SearchConfig, SearchMethod
from . import events
from .events import ProgressSink, SafeSink, SearchStep
from .tree import Evaluation, ThoughtNode, ThoughtTree


logger = logging.getLogger(__name__)

# Content logger for full thought text
content_logger = logging.getLogger('tot.content')
content_handler = logging.StreamHandler()
content_handler.setFormatter(logging.Formatter(
    '%(asctime)s - CONTENT - %(message)s',
    datefmt='%H:%M:%S'
))
content_logger.addHandler(content_handler)
content_logger.setLevel(logging.INFO)
content_logger.propagate = False  # Don't duplicate in main logger


@dataclass
class SearchOutcome:
    """What a strategy reports back to the engine."""
    solution: Optional[ThoughtNode] = None
    budget_exhausted: bool = False


@dataclass
class Expansion:
    """Result of visiting one frontier node."""
    solution: Optional[ThoughtNode] = None
    promising: List[ThoughtNode] = field(default_factory=list)


class SearchStrategy(ABC):
    """Shared expansion, evaluation and termination rules.

    One instance serves one run: ``explore`` resets its counters, and the
    engine reads ``explored_nodes`` and ``steps`` even after cancellation.
    """

    method: SearchMethod

    def __init__(self, steps: Optional[List[SearchStep]] = None):
        self.steps: List[SearchStep] = steps if steps is not None else []
        self.explored_nodes = 0
        self.tree: Optional[ThoughtTree] = None
        self.config: Optional[SearchConfig] = None
        self.generator: Optional[ThoughtGenerator] = None
        self.evaluator: Optional[ThoughtEvaluator] = None
        self.sink = SafeSink(None)

    async def explore(
        self,
        tree: ThoughtTree,
        config: SearchConfig,
        generator: ThoughtGenerator,
        evaluator: ThoughtEvaluator,
        sink: Optional[ProgressSink] = None,
    ) -> SearchOutcome:
        self.tree = tree
        self.config = config
        self.generator = generator
        self.evaluator = evaluator
        self.sink = SafeSink(sink)
        self.explored_nodes = 0
        return await self._search()

    @abstractmethod
    async def _search(self) -> SearchOutcome:
        pass

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def budget_left(self) -> int:
        return self.config.max_nodes - len(self.tree)

    def has_budget(self) -> bool:
        return self.budget_left() > 0

    def _finalize_unexpanded(self, nodes) -> None:
        """Nodes left on the frontier become leaves for fallback scoring."""
        for node in nodes:
            self.tree.mark_leaf(node)

    # ------------------------------------------------------------------
    # Step log
    # ------------------------------------------------------------------

    def record(self, action: str, node: ThoughtNode, message: str, **extra) -> SearchStep:
        step = SearchStep(step_index=len(self.steps), action=action, node_id=node.id, message=message, **extra)
        self.steps.append(step)
        return step

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    async def _generate(self, node: ThoughtNode) -> List[str]:
        count = self.config.candidates_per_step
        try:
            raw = await self.generator.generate(node, self.config, count)
        except Exception as e:
            logger.warning(f"Generator failed on {node.id}: {e}; treating as no candidates")
            raw = []
        candidates = clean_candidates(raw or [], count)
        budget = self.budget_left()
        if len(candidates) > budget:
            logger.info(f"✂️ Node budget allows only {budget} of {len(candidates)} candidates")
            candidates = candidates[:budget]
        return candidates

    async def _evaluate(self, node: ThoughtNode) -> EvaluationResult:
        try:
            result = await self.evaluator.evaluate(node, self.config)
        except Exception as e:
            logger.warning(f"Evaluator failed on {node.id}: {e}; using default verdict")
            return EvaluationResult.default()
        return EvaluationResult.coerce(result)

    def _apply_evaluation(self, node: ThoughtNode, result: EvaluationResult) -> None:
        self.tree.mark_evaluated(node, result.evaluation, result.confidence, result.reasoning)
        if node.evaluation == Evaluation.IMPOSSIBLE:
            self.tree.mark_leaf(node)
        self.record(
            "evaluate", node,
            f"Evaluated {node.id}: {node.evaluation.value} ({node.confidence:.2f})",
            thought=node.thought,
            evaluation=node.evaluation.value,
            reasoning=node.reasoning,
        )
        self.sink.emit(
            events.GENERATE_CANDIDATE,
            parentId=node.parent_id,
            childId=node.id,
            thought=node.thought,
            evaluation=node.evaluation.value,
            confidence=node.confidence,
            message=f"Generated candidate thought: {node.evaluation.value}",
        )
        self.sink.emit(
            events.EVALUATION_COMPLETE,
            nodeId=node.id,
            evaluation=node.evaluation.value,
            confidence=node.confidence,
            reasoning=node.reasoning,
        )
        content_logger.info(f"[{node.id}] depth={node.depth} {node.evaluation.value} ({node.confidence:.2f}): {node.thought}")

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    async def _create_children(self, parent: ThoughtNode, candidates: List[str]) -> List[ThoughtNode]:
        """Create and evaluate one child per candidate, in generation order.

        Stops at the first ``sure`` child; no sibling generated after it stays
        in the tree. If cancelled, the unevaluated children are rolled back.
        """
        if self.config.parallel_evaluation and len(candidates) > 1:
            return await self._create_children_parallel(parent, candidates)

        children: List[ThoughtNode] = []
        for text in candidates:
            child = self.tree.create_child(parent, text)
            try:
                result = await self._evaluate(child)
            except asyncio.CancelledError:
                self.tree.discard(child)
                raise
            self._apply_evaluation(child, result)
            children.append(child)
            if child.evaluation == Evaluation.SURE:
                break
        return children

    async def _create_children_parallel(self, parent: ThoughtNode, candidates: List[str]) -> List[ThoughtNode]:
        created = [self.tree.create_child(parent, text) for text in candidates]
        try:
            results = await asyncio.gather(*(self._evaluate(child) for child in created))
        except asyncio.CancelledError:
            for child in reversed(created):
                self.tree.discard(child)
            raise

        children: List[ThoughtNode] = []
        for index, (child, result) in enumerate(zip(created, results)):
            self._apply_evaluation(child, result)
            children.append(child)
            if child.evaluation == Evaluation.SURE:
                for later in reversed(created[index + 1:]):
                    self.tree.discard(later)
                break
        return children

    async def _finalize_leaf(self, node: ThoughtNode) -> Optional[ThoughtNode]:
        """Close a node at the depth limit; returns it if it is ``sure``."""
        if not node.is_evaluated and node.parent_id is not None:
            self._apply_evaluation(node, await self._evaluate(node))
        self.tree.mark_leaf(node)
        return node if node.evaluation == Evaluation.SURE else None

    async def visit(self, node: ThoughtNode) -> Expansion:
        """Explore one frontier node: finalize it or expand it."""
        self.explored_nodes += 1
        indent = "  " * node.depth
        logger.info(f"{indent}📍 Exploring {node.id} at depth {node.depth}")
        self.sink.emit(
            events.EXPLORE_NODE,
            nodeId=node.id,
            thought=node.thought,
            step=node.step,
            message=f"{self.method.value.upper()} exploring: {node.thought[:50]}...",
        )

        if node.depth >= self.config.max_depth:
            return Expansion(solution=await self._finalize_leaf(node))

        candidates = await self._generate(node)
        self.record(
            "generate", node,
            f"Generated {len(candidates)} candidate thoughts for node {node.id}",
            candidates_generated=len(candidates),
        )
        if not candidates:
            logger.info(f"{indent}❌ No candidates for {node.id}, marking as dead end")
            self.tree.mark_leaf(node)
            self.record("backtrack", node, f"Node {node.id} is a dead end")
            self.sink.emit(events.BACKTRACK, nodeId=node.id, message=f"Dead end at {node.id}")
            return Expansion()

        children = await self._create_children(node, candidates)
        for child in children:
            if child.evaluation == Evaluation.SURE:
                logger.info(f"{indent}✅ Found sure thought {child.id}")
                return Expansion(solution=child)
        return Expansion(promising=[c for c in children if c.evaluation == Evaluation.MAYBE])


class FrontierStrategy(SearchStrategy):
    """Pop one node at a time from a frontier until success, budget or exhaustion."""

    @abstractmethod
    def _reset_frontier(self, root: ThoughtNode) -> None:
        pass

    @abstractmethod
    def _push(self, children: List[ThoughtNode]) -> None:
        pass

    @abstractmethod
    def _pop(self) -> ThoughtNode:
        pass

    @abstractmethod
    def _remaining(self) -> List[ThoughtNode]:
        pass

    async def _search(self) -> SearchOutcome:
        self._reset_frontier(self.tree.root)
        while self._remaining() and self.has_budget():
            node = self._pop()
            expansion = await self.visit(node)
            if expansion.solution is not None:
                return SearchOutcome(solution=expansion.solution)
            self._push(expansion.promising)

        leftover = self._remaining()
        if leftover:
            logger.info(f"🪫 Node budget of {self.config.max_nodes} exhausted with {len(leftover)} nodes unexplored")
            self._finalize_unexpanded(leftover)
        return SearchOutcome(budget_exhausted=bool(leftover))


class BreadthFirstStrategy(FrontierStrategy):
    method = SearchMethod.BFS

    def _reset_frontier(self, root: ThoughtNode) -> None:
        self.queue: Deque[ThoughtNode] = deque([root])

    def _push(self, children: List[ThoughtNode]) -> None:
        self.queue.extend(children)

    def _pop(self) -> ThoughtNode:
        return self.queue.popleft()

    def _remaining(self) -> List[ThoughtNode]:
        return list(self.queue)


class DepthFirstStrategy(FrontierStrategy):
    method = SearchMethod.DFS

    def _reset_frontier(self, root: ThoughtNode) -> None:
        self.stack: List[ThoughtNode] = [root]

    def _push(self, children: List[ThoughtNode]) -> None:
        # reversed so the first generated child is popped first
        self.stack.extend(reversed(children))

    def _pop(self) -> ThoughtNode:
        return self.stack.pop()

    def _remaining(self) -> List[ThoughtNode]:
        return list(self.stack)


class BeamStrategy(SearchStrategy):
    """Level-synchronized search keeping ``candidates_per_step`` nodes per level."""
    method = SearchMethod.BEAM

    async def _search(self) -> SearchOutcome:
        beam_width = self.config.candidates_per_step
        current_level: List[ThoughtNode] = [self.tree.root]

        for depth in range(self.config.max_depth):
            if not current_level:
                break
            pool: List[ThoughtNode] = []
            for index, node in enumerate(current_level):
                if not self.has_budget():
                    leftover = current_level[index:] + pool
                    logger.info(f"🪫 Node budget of {self.config.max_nodes} exhausted at depth {depth}")
                    self._finalize_unexpanded(leftover)
                    return SearchOutcome(budget_exhausted=True)
                expansion = await self.visit(node)
                if expansion.solution is not None:
                    return SearchOutcome(solution=expansion.solution)
                pool.extend(expansion.promising)

            # sorted() is stable: equal confidences keep creation order
            ranked = sorted(pool, key=lambda n: n.confidence, reverse=True)
            current_level, pruned = ranked[:beam_width], ranked[beam_width:]
            self._finalize_unexpanded(pruned)
            if pool:
                anchor = current_level[0]
                kept = [n.id for n in current_level]
                self.record(
                    "select", anchor,
                    f"Kept {len(kept)} of {len(pool)} candidates for depth {depth + 1}",
                    selected_nodes=kept,
                )
                self.sink.emit(events.SELECT, depth=depth + 1, selectedNodes=kept, prunedNodes=[n.id for n in pruned])
                logger.info(f"🔦 Beam kept {len(kept)}/{len(pool)} nodes for depth {depth + 1}")

        # nodes that reached max_depth are leaves
        self._finalize_unexpanded(current_level)
        return SearchOutcome()


STRATEGIES: Dict[SearchMethod, Type[SearchStrategy]] = {
    SearchMethod.BFS: BreadthFirstStrategy,
    SearchMethod.DFS: DepthFirstStrategy,
    SearchMethod.BEAM: BeamStrategy,
}


def create_strategy(method: SearchMethod, steps: Optional[List[SearchStep]] = None) -> SearchStrategy:
    return STRATEGIES[SearchMethod(method)](steps)
