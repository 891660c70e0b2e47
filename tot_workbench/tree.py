"""
Thought tree model.

The tree is a flat table of ``id -> ThoughtNode`` kept in creation order.
Each node stores its ancestor path at creation time, so paths never depend on
walking parent links.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set


ROOT_ID = "root"
ROOT_REASONING = "Initial problem state"


class NodeStateError(RuntimeError):
    """Illegal mutation of a thought node (e.g. evaluating it twice)."""


class Evaluation(str, Enum):
    PENDING = "pending"
    SURE = "sure"
    MAYBE = "maybe"
    IMPOSSIBLE = "impossible"


@dataclass
class ThoughtNode:
    """A single thought in the search tree."""
    id: str
    thought: str
    depth: int
    parent_id: Optional[str] = None
    path: List[str] = field(default_factory=list)  # ancestor thoughts, root first
    evaluation: Evaluation = Evaluation.PENDING
    confidence: float = 0.0
    reasoning: str = ""
    is_leaf: bool = False
    children: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"Depth must be non-negative, got {self.depth}")
        if len(self.path) != self.depth:
            raise ValueError(f"Path length {len(self.path)} does not match depth {self.depth}")

    @property
    def step(self) -> int:
        return self.depth

    @property
    def is_evaluated(self) -> bool:
        return self.evaluation != Evaluation.PENDING

    def to_dict(self) -> Dict[str, Any]:
        """Flat serialization; children are listed by id."""
        return {
            "id": self.id,
            "thought": self.thought,
            "step": self.step,
            "parentId": self.parent_id,
            "evaluation": self.evaluation.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "isLeaf": self.is_leaf,
            "depth": self.depth,
            "path": list(self.path),
            "children": list(self.children),
        }


class ThoughtTree:
    """Owns every node of one search run and the monotonic id counter."""

    def __init__(self, problem: str):
        self._nodes: Dict[str, ThoughtNode] = {}
        self._counter = 1  # the root counts as the first node
        self.root = ThoughtNode(
            id=ROOT_ID,
            thought=problem,
            depth=0,
            confidence=1.0,
            reasoning=ROOT_REASONING,
        )
        self._nodes[ROOT_ID] = self.root

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[ThoughtNode]:
        return iter(list(self._nodes.values()))

    @property
    def nodes(self) -> List[ThoughtNode]:
        """All nodes in creation order."""
        return list(self._nodes.values())

    def get(self, node_id: str) -> ThoughtNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise KeyError(f"Unknown node id: {node_id}")

    def parent_of(self, node: ThoughtNode) -> Optional[ThoughtNode]:
        return self._nodes[node.parent_id] if node.parent_id is not None else None

    def children_of(self, node: ThoughtNode) -> List[ThoughtNode]:
        return [self._nodes[child_id] for child_id in node.children]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def create_child(self, parent: ThoughtNode, thought: str) -> ThoughtNode:
        """Allocate the next node under ``parent`` with evaluation pending."""
        if parent.id not in self._nodes:
            raise NodeStateError(f"Parent {parent.id} does not belong to this tree")
        child = ThoughtNode(
            id=f"node-{self._counter}",
            thought=thought,
            depth=parent.depth + 1,
            parent_id=parent.id,
            path=parent.path + [parent.thought],
        )
        self._counter += 1
        self._nodes[child.id] = child
        parent.children.append(child.id)
        return child

    def mark_evaluated(self, node: ThoughtNode, evaluation: Evaluation, confidence: float, reasoning: str) -> None:
        """Record the evaluator's verdict. Allowed exactly once per node."""
        if node.is_evaluated:
            raise NodeStateError(f"Node {node.id} was already evaluated as {node.evaluation.value}")
        evaluation = Evaluation(evaluation)
        if evaluation == Evaluation.PENDING:
            raise NodeStateError(f"Cannot mark node {node.id} as pending")
        if not (0.0 <= confidence <= 1.0):
            raise ValueError(f"Confidence must be in [0, 1], got {confidence}")
        node.evaluation = evaluation
        node.confidence = float(confidence)
        node.reasoning = reasoning

    def mark_leaf(self, node: ThoughtNode) -> None:
        node.is_leaf = True

    def discard(self, node: ThoughtNode) -> None:
        """Roll back a childless node created by the expansion in progress.

        Only used when an expansion is interrupted (cancellation) or cut short
        by a ``sure`` sibling. Ids are never reused.
        """
        if node.id == ROOT_ID:
            raise NodeStateError("The root cannot be discarded")
        if node.children:
            raise NodeStateError(f"Node {node.id} already has children")
        self._nodes.pop(node.id, None)
        parent = self._nodes.get(node.parent_id)
        if parent is not None and node.id in parent.children:
            parent.children.remove(node.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def preorder(self) -> Iterator[ThoughtNode]:
        """Pre-order from the root, children in creation order."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(self._nodes[c] for c in reversed(node.children))

    def leaves(self) -> List[ThoughtNode]:
        return [n for n in self.preorder() if n.is_leaf or not n.children]

    def path_to(self, node: ThoughtNode) -> List[ThoughtNode]:
        """Nodes from the root to ``node``, checked against its stored path."""
        chain: List[ThoughtNode] = [node]
        current = node
        while current.parent_id is not None:
            current = self._nodes[current.parent_id]
            chain.append(current)
        chain.reverse()
        ancestors = [n.thought for n in chain[:-1]]
        if ancestors != node.path:
            raise NodeStateError(f"Stored path of {node.id} disagrees with its ancestry")
        return chain

    def to_dict(self, selected_ids: Optional[Set[str]] = None) -> Dict[str, Any]:
        """Nested serialization rooted at the root, for visualization clients."""
        selected_ids = selected_ids or set()

        def _nested(node: ThoughtNode) -> Dict[str, Any]:
            data = node.to_dict()
            data["isSelected"] = node.id in selected_ids
            data["children"] = [_nested(child) for child in self.children_of(node)]
            return data

        return _nested(self.root)
