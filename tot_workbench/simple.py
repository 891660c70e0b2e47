"""
Single-prompt tree of thoughts: several simulated experts reason in rounds
and drop out when their step is wrong. One chat call, no explicit tree.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from .config import ConfigurationError
from .llm import ChatCompletionsClient
from .prompts import PROMPTS


logger = logging.getLogger(__name__)

SIMPLE_EXAMPLES: Dict[str, str] = {
    "math": "Use the numbers 4, 1, 8, 7 with addition, subtraction, multiplication and division to make 24",
    "logic": "Three switches downstairs control three lamps upstairs and you may go upstairs only once. How do you find out which switch controls which lamp?",
    "creative": "Design an urban transport plan that tackles both traffic congestion and air pollution",
    "reasoning": "If it rains tomorrow, Sam will not go to the park. If Sam does not go to the park, Sam reads at home. Sam is playing football right now. What can you say about tomorrow's weather?",
}


@dataclass
class SimpleToTRequest:
    problem: str
    num_experts: int = 3
    max_steps: int = 5
    model_name: str = "gpt-3.5-turbo"
    temperature: float = 0.8
    max_tokens: int = 2000

    def __post_init__(self):
        if not isinstance(self.problem, str) or not self.problem.strip():
            raise ConfigurationError("problem must be a non-empty string")
        if self.num_experts < 1:
            raise ConfigurationError(f"num_experts must be >= 1, got {self.num_experts}")
        if self.max_steps < 1:
            raise ConfigurationError(f"max_steps must be >= 1, got {self.max_steps}")
        if not (0 <= self.temperature <= 2):
            raise ConfigurationError(f"temperature must be in [0, 2], got {self.temperature}")

    def build_prompt(self) -> str:
        return PROMPTS["simple_prompt"].format(
            num_experts=self.num_experts,
            problem=self.problem,
            max_steps=self.max_steps,
        )

    def to_result(self, response: str, total_time: int) -> Dict[str, Any]:
        return {
            "problem": self.problem,
            "numExperts": self.num_experts,
            "maxSteps": self.max_steps,
            "response": response,
            "totalTime": total_time,
            "model": self.model_name,
        }


async def run_simple_tot(request: SimpleToTRequest, client: ChatCompletionsClient) -> Dict[str, Any]:
    """Run the multi-expert prompt and return the whole reply."""
    started = time.monotonic()
    logger.info(f"🧑‍🤝‍🧑 Simple ToT with {request.num_experts} experts, {request.max_steps} rounds")
    response = await client.complete(
        request.build_prompt(),
        system=PROMPTS["simple_system"],
        model=request.model_name,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        log_context="simple tot",
    )
    return request.to_result(response, int((time.monotonic() - started) * 1000))


async def stream_simple_tot(request: SimpleToTRequest, client: ChatCompletionsClient) -> AsyncIterator[Dict[str, Any]]:
    """Yield ``start``, then ``chunk`` records, then ``final_result``."""
    started = time.monotonic()
    yield {
        "type": "start",
        "message": "Starting simple tree-of-thoughts reasoning...",
        "numExperts": request.num_experts,
        "maxSteps": request.max_steps,
    }
    parts = []
    async for content in client.stream(
        request.build_prompt(),
        system=PROMPTS["simple_system"],
        model=request.model_name,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    ):
        parts.append(content)
        yield {"type": "chunk", "content": content}
    yield {
        "type": "final_result",
        "result": request.to_result("".join(parts), int((time.monotonic() - started) * 1000)),
    }


def get_simple_examples(key: Optional[str] = None) -> Dict[str, str]:
    if key is None:
        return dict(SIMPLE_EXAMPLES)
    return {key: SIMPLE_EXAMPLES[key]} if key in SIMPLE_EXAMPLES else {}
