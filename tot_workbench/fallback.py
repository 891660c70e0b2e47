"""
Fallback selection when no thought was classified ``sure``.

Leaves are scored as ``confidence + evaluation bonus + 0.1 * depth`` and
visited in pre-order from the root (children in creation order); the first
leaf with the maximal score wins.
"""

from typing import Dict, List, Optional

from .tree import Evaluation, ThoughtNode, ThoughtTree


EVALUATION_BONUS: Dict[Evaluation, float] = {
    Evaluation.SURE: 0.5,
    Evaluation.MAYBE: 0.0,
    Evaluation.IMPOSSIBLE: -0.5,
    Evaluation.PENDING: 0.0,
}
DEPTH_BONUS = 0.1
SCORE_PRECISION = 9


def score_node(node: ThoughtNode) -> float:
    # rounded so sums that are equal on paper compare equal
    return round(node.confidence + EVALUATION_BONUS[node.evaluation] + DEPTH_BONUS * node.depth, SCORE_PRECISION)


def find_best_leaf(tree: ThoughtTree) -> ThoughtNode:
    """Return the highest-scoring leaf; the root if it is the only leaf."""
    best: Optional[ThoughtNode] = None
    best_score = float("-inf")
    for node in tree.leaves():
        score = score_node(node)
        if score > best_score:
            best, best_score = node, score
    # leaves() always contains at least one node
    return best


def select_best_path(tree: ThoughtTree) -> List[ThoughtNode]:
    """Best leaf and its ancestors, root first."""
    return tree.path_to(find_best_leaf(tree))
