"""
Simple prompt loader for the thought-tree collaborators.
"""

import json
import os
from typing import Dict

from .config import SearchConfig, TaskType
from .tree import ThoughtNode


def load_prompts() -> Dict[str, str]:
    """Load prompts from JSON file."""
    prompts_file = os.path.join(os.path.dirname(__file__), 'prompts.json')
    with open(prompts_file, 'r') as f:
        return json.load(f)


def build_path_context(node: ThoughtNode) -> str:
    """Describe where the node sits in the reasoning chain."""
    if node.path:
        return f"Current reasoning path: {' → '.join(node.path)} → {node.thought}"
    return f"Initial problem: {node.thought}"


def build_system_message(task_type: TaskType) -> str:
    specific = PROMPTS.get(f"system_{TaskType(task_type).value}", PROMPTS["system_custom"])
    return f"{PROMPTS['system_base']} {specific}"


def build_generation_prompt(node: ThoughtNode, config: SearchConfig, count: int) -> str:
    return PROMPTS["generation"].format(
        path_context=build_path_context(node),
        count=count,
        task_type=config.task_type.value,
        next_step=node.step + 1,
        max_depth=config.max_depth,
    )


def build_evaluation_prompt(node: ThoughtNode, config: SearchConfig) -> str:
    return PROMPTS["evaluation"].format(
        problem=config.problem,
        thought=node.thought,
        step=node.step,
    )


# Load prompts at module level
PROMPTS = load_prompts()
