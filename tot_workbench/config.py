"""
Search configuration for the thought-tree engine.

Validation happens in ``__post_init__`` so that a bad request fails before
any collaborator is contacted.
"""

import os
import json
import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    # dotenv not available, use environment variables directly
    pass


logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised for invalid search input, before any collaborator call."""


class TaskType(str, Enum):
    """Domain tags used only to steer collaborator prompts."""
    GAME_24 = "game-24"
    CREATIVE_WRITING = "creative-writing"
    MATHEMATICAL_REASONING = "mathematical-reasoning"
    LOGICAL_PUZZLE = "logical-puzzle"
    CUSTOM = "custom"


class SearchMethod(str, Enum):
    BFS = "bfs"
    DFS = "dfs"
    BEAM = "beam"


# camelCase keys accepted from requests and config files
_WIRE_KEYS = {
    "problem": "problem",
    "taskType": "task_type",
    "searchMethod": "search_method",
    "maxDepth": "max_depth",
    "candidatesPerStep": "candidates_per_step",
    "maxNodes": "max_nodes",
    "temperature": "temperature",
    "modelName": "model_name",
    "evaluationTemperature": "evaluation_temperature",
    "parallelEvaluation": "parallel_evaluation",
}


@dataclass
class SearchConfig:
    """Configuration for a single thought-tree search run."""
    problem: str
    task_type: TaskType = TaskType.CUSTOM
    search_method: SearchMethod = SearchMethod.BFS
    max_depth: int = 3
    candidates_per_step: int = 3
    max_nodes: int = 20
    temperature: float = 0.8
    model_name: str = "gpt-3.5-turbo"
    evaluation_temperature: float = 0.3
    parallel_evaluation: bool = True

    def __post_init__(self):
        """Validate configuration values."""
        if not isinstance(self.problem, str) or not self.problem.strip():
            raise ConfigurationError("problem must be a non-empty string")
        try:
            self.search_method = SearchMethod(self.search_method)
        except ValueError:
            raise ConfigurationError(f"Unsupported search method: {self.search_method}")
        try:
            self.task_type = TaskType(self.task_type)
        except ValueError:
            raise ConfigurationError(f"Unsupported task type: {self.task_type}")
        for name in ("max_depth", "candidates_per_step", "max_nodes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {value}")
        for name in ("temperature", "evaluation_temperature"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not (0 <= value <= 2):
                raise ConfigurationError(f"{name} must be in [0, 2], got {value!r}")
        if not isinstance(self.model_name, str) or not self.model_name.strip():
            raise ConfigurationError("model_name must be a non-empty string")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], defaults: Optional[Mapping[str, Any]] = None) -> "SearchConfig":
        """Build a config from camelCase (wire) or snake_case keys.

        Unknown keys are ignored; ``None`` values fall back to the defaults.
        """
        known = {f.name for f in fields(cls)}
        merged: Dict[str, Any] = {}
        for source in (defaults or {}, data):
            for key, value in source.items():
                name = _WIRE_KEYS.get(key, key)
                if name in known and value is not None:
                    merged[name] = value
        if "problem" not in merged:
            raise ConfigurationError("problem is required")
        return cls(**merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem": self.problem,
            "taskType": self.task_type.value,
            "searchMethod": self.search_method.value,
            "maxDepth": self.max_depth,
            "candidatesPerStep": self.candidates_per_step,
            "maxNodes": self.max_nodes,
            "temperature": self.temperature,
            "modelName": self.model_name,
        }


# Keys a defaults file may set; the problem always comes from the caller
_DEFAULTS_ALLOWED_KEYS = (set(_WIRE_KEYS) | set(_WIRE_KEYS.values())) - {"problem"}


def load_search_defaults(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load default search parameters from a JSON file, if present.

    The path comes from ``TOT_CONFIG_PATH`` or ``config.json`` beside this
    module. Missing or broken files yield an empty dict.
    """
    config_path = config_path or os.getenv("TOT_CONFIG_PATH") or os.path.join(os.path.dirname(__file__), "config.json")
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r") as f:
            loaded = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        return {}
    if not isinstance(loaded, dict):
        logger.warning(f"Ignoring config file {config_path}: expected a JSON object")
        return {}
    filtered = {k: v for k, v in loaded.items() if k in _DEFAULTS_ALLOWED_KEYS}
    ignored = sorted(set(loaded) - set(filtered))
    if ignored:
        logger.info(f"Ignoring unknown config keys: {ignored}")
    return filtered
