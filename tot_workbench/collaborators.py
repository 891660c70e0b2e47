"""
Generation and evaluation collaborators.

The search engine only ever talks to these two abstract capabilities. The
chat-backed implementations own prompt construction and tolerant parsing;
whatever the model returns, they hand the engine a well-formed value.
"""

import re
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .config import SearchConfig
from .llm import ChatCompletionError, ChatCompletionsClient
from .prompts import (
    PROMPTS,
    build_evaluation_prompt,
    build_generation_prompt,
    build_system_message,
)
from .tree import Evaluation, ThoughtNode


logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASONING = "No usable evaluation was produced; treating the thought as worth exploring."

_NUMBERED_LINE_RE = re.compile(r'^\s*\d+[.)]\s*(.+)$')
_EVALUATION_RE = re.compile(r'\b(sure|maybe|impossible)\b', re.IGNORECASE)
_NUMBER_RE = re.compile(r'(\d+(?:\.\d+)?)')


@dataclass(frozen=True)
class EvaluationResult:
    """Verdict of the evaluation collaborator for one thought."""
    evaluation: Evaluation
    confidence: float
    reasoning: str

    @classmethod
    def default(cls, reasoning: str = DEFAULT_REASONING) -> "EvaluationResult":
        return cls(Evaluation.MAYBE, DEFAULT_CONFIDENCE, reasoning)

    @classmethod
    def coerce(cls, value: object) -> "EvaluationResult":
        """Return ``value`` if it honours the contract, else the default."""
        if not isinstance(value, EvaluationResult):
            return cls.default()
        try:
            evaluation = Evaluation(value.evaluation)
            confidence = float(value.confidence)
        except (TypeError, ValueError):
            return cls.default()
        if evaluation == Evaluation.PENDING or not (0.0 <= confidence <= 1.0):
            return cls.default()
        return cls(evaluation, confidence, str(value.reasoning or ""))


# ============================================================================
# Abstract Interfaces
# ============================================================================

class ThoughtGenerator(ABC):
    """Produces candidate next thoughts for a node."""

    @abstractmethod
    async def generate(self, node: ThoughtNode, config: SearchConfig, count: int) -> List[str]:
        """Return up to ``count`` distinct candidate thoughts (possibly none)."""
        pass

    async def close(self):
        pass


class ThoughtEvaluator(ABC):
    """Classifies a thought as sure / maybe / impossible."""

    @abstractmethod
    async def evaluate(self, node: ThoughtNode, config: SearchConfig) -> EvaluationResult:
        """Evaluate ``node`` against ``config.problem``. Must not raise."""
        pass

    async def close(self):
        pass


# ============================================================================
# Parsing helpers
# ============================================================================

def normalize_text(text: str) -> str:
    """Normalize text for deduplication."""
    return re.sub(r'\s+', ' ', text.strip().lower())


def clean_candidates(candidates: Iterable[object], limit: int) -> List[str]:
    """Strip, drop empties and duplicates, and cap at ``limit``."""
    seen = set()
    unique: List[str] = []
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        text = candidate.strip()
        normalized = normalize_text(text)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        unique.append(text)
        if len(unique) >= limit:
            break
    return unique


def parse_generated_thoughts(response_text: str, max_candidates: int) -> List[str]:
    """Parse a numbered list (``1. ...``) into at most ``max_candidates`` thoughts."""
    thoughts = []
    for line in response_text.splitlines():
        match = _NUMBERED_LINE_RE.match(line)
        if match:
            thoughts.append(match.group(1))
    return clean_candidates(thoughts, max_candidates)


def parse_evaluation(response_text: str) -> EvaluationResult:
    """Parse ``Evaluation:`` / ``Confidence:`` / ``Reasoning:`` lines.

    Missing fields fall back to the defaults; reasoning falls back to the
    whole response.
    """
    evaluation = Evaluation.MAYBE
    confidence = DEFAULT_CONFIDENCE
    reasoning = ""

    for line in response_text.splitlines():
        label, sep, value = line.partition(":")
        if not sep:
            continue
        label = label.strip().strip("*").strip().lower()
        if label == "evaluation":
            eval_match = _EVALUATION_RE.search(value)
            if eval_match:
                evaluation = Evaluation(eval_match.group(1).lower())
        elif label == "confidence":
            conf_match = _NUMBER_RE.search(value)
            if conf_match:
                confidence = min(1.0, max(0.0, float(conf_match.group(1))))
        elif label == "reasoning":
            reasoning = value.strip()

    if not reasoning:
        reasoning = response_text.strip() or DEFAULT_REASONING
    return EvaluationResult(evaluation, confidence, reasoning)


# ============================================================================
# Concrete Implementations
# ============================================================================

class ChatThoughtGenerator(ThoughtGenerator):
    """Chat-backed generator. Any client failure yields no candidates."""

    def __init__(self, client: ChatCompletionsClient, max_tokens: int = 200):
        self.client = client
        self.max_tokens = max_tokens

    async def close(self):
        await self.client.close()

    async def generate(self, node: ThoughtNode, config: SearchConfig, count: int) -> List[str]:
        prompt = build_generation_prompt(node, config, count)
        logger.info(f"🤖 Generating {count} thoughts for {node.id} (depth {node.depth})")
        try:
            response_text = await self.client.complete(
                prompt,
                system=build_system_message(config.task_type),
                model=config.model_name,
                temperature=config.temperature,
                max_tokens=self.max_tokens,
                log_context="generation",
            )
        except (ChatCompletionError, ValueError) as e:
            logger.warning(f"Thought generation failed for {node.id}: {e}")
            return []
        thoughts = parse_generated_thoughts(response_text, count)
        logger.info(f"🧠 Parsed {len(thoughts)} thoughts from response")
        return thoughts


class ChatThoughtEvaluator(ThoughtEvaluator):
    """Chat-backed evaluator. Any client failure yields the default verdict."""

    def __init__(self, client: ChatCompletionsClient, max_tokens: int = 300):
        self.client = client
        self.max_tokens = max_tokens

    async def close(self):
        await self.client.close()

    async def evaluate(self, node: ThoughtNode, config: SearchConfig) -> EvaluationResult:
        try:
            response_text = await self.client.complete(
                build_evaluation_prompt(node, config),
                system=PROMPTS["evaluation_system"],
                model=config.model_name,
                temperature=config.evaluation_temperature,
                max_tokens=self.max_tokens,
                log_context="evaluation",
            )
        except (ChatCompletionError, ValueError) as e:
            logger.warning(f"Thought evaluation failed for {node.id}: {e}, using default verdict")
            return EvaluationResult.default()
        return parse_evaluation(response_text)


class RuleBasedThoughtEvaluator(ThoughtEvaluator):
    """Offline heuristic evaluator; never marks anything ``sure``."""

    async def evaluate(self, node: ThoughtNode, config: SearchConfig) -> EvaluationResult:
        normalized_new = normalize_text(node.thought)
        if len(normalized_new) < 3:
            return EvaluationResult(Evaluation.IMPOSSIBLE, 0.9, "Thought is empty or trivial")
        for ancestor in node.path:
            if normalize_text(ancestor) == normalized_new:
                return EvaluationResult(Evaluation.IMPOSSIBLE, 0.8, "Thought repeats an earlier step")

        score = DEFAULT_CONFIDENCE
        # Length bonus for detailed thoughts
        if len(node.thought) > 50:
            score += 0.1
        if any(ch.isdigit() for ch in node.thought):
            score += 0.05
        return EvaluationResult(Evaluation.MAYBE, min(1.0, score), "Heuristic score from thought length and content")


def create_default_collaborators(client: Optional[ChatCompletionsClient] = None, use_llm_evaluator: bool = True):
    """Build the chat-backed generator and evaluator sharing one client."""
    client = client or ChatCompletionsClient()
    generator = ChatThoughtGenerator(client)
    evaluator: ThoughtEvaluator = ChatThoughtEvaluator(client) if use_llm_evaluator else RuleBasedThoughtEvaluator()
    return generator, evaluator
