"""
Tree-of-Thoughts workbench: a thought-tree search engine (BFS, DFS, beam)
over injected generation and evaluation collaborators.
"""

from .collaborators import (
    ChatThoughtEvaluator,
    ChatThoughtGenerator,
    EvaluationResult,
    RuleBasedThoughtEvaluator,
    ThoughtEvaluator,
    ThoughtGenerator,
)
from .config import ConfigurationError, SearchConfig, SearchMethod, TaskType
from .engine import SearchResult, run_search
from .events import CallbackSink, ProgressSink, QueueSink, SearchStep
from .fallback import find_best_leaf, score_node
from .tree import Evaluation, NodeStateError, ThoughtNode, ThoughtTree

__all__ = [
    "CallbackSink",
    "ChatThoughtEvaluator",
    "ChatThoughtGenerator",
    "ConfigurationError",
    "Evaluation",
    "EvaluationResult",
    "NodeStateError",
    "ProgressSink",
    "QueueSink",
    "RuleBasedThoughtEvaluator",
    "SearchConfig",
    "SearchMethod",
    "SearchResult",
    "SearchStep",
    "TaskType",
    "ThoughtEvaluator",
    "ThoughtGenerator",
    "ThoughtNode",
    "ThoughtTree",
    "find_best_leaf",
    "run_search",
    "score_node",
]
