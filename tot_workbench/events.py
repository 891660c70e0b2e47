"""
Progress events and the search step log.

A sink receives one self-describing record (a dict with a ``type`` key) at a
time. Sinks must not block; the engine treats them as best effort.
"""

import time
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


# Record types emitted by the engine
START = "start"
EXPLORE_NODE = "explore_node"
GENERATE_CANDIDATE = "generate_candidate"
EVALUATION_COMPLETE = "evaluation_complete"
SELECT = "select"
BACKTRACK = "backtrack"
COMPLETE = "complete"
CANCELLED = "cancelled"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SearchStep:
    """One entry of the append-only audit log of a search."""
    step_index: int
    action: str  # "generate" | "evaluate" | "select" | "backtrack" | "complete"
    node_id: str
    message: str
    thought: Optional[str] = None
    evaluation: Optional[str] = None
    reasoning: Optional[str] = None
    candidates_generated: Optional[int] = None
    selected_nodes: Optional[List[str]] = None
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "stepIndex": self.step_index,
            "action": self.action,
            "nodeId": self.node_id,
            "thought": self.thought,
            "evaluation": self.evaluation,
            "reasoning": self.reasoning,
            "candidatesGenerated": self.candidates_generated,
            "selectedNodes": self.selected_nodes,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        return {k: v for k, v in data.items() if v is not None}


class ProgressSink(ABC):
    """Receives progress records. Implementations must return promptly."""

    @abstractmethod
    def emit(self, record: Dict[str, Any]) -> None:
        pass


class NullSink(ProgressSink):
    def emit(self, record: Dict[str, Any]) -> None:
        pass


class CallbackSink(ProgressSink):
    """Forwards each record to a plain callable."""

    def __init__(self, callback: Callable[[Dict[str, Any]], None]):
        self.callback = callback

    def emit(self, record: Dict[str, Any]) -> None:
        self.callback(record)


class QueueSink(ProgressSink):
    """Puts records on an ``asyncio.Queue``; drops them when the queue is full."""

    def __init__(self, queue: Optional[asyncio.Queue] = None, maxsize: int = 1000):
        self.queue = queue if queue is not None else asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def emit(self, record: Dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1:
                logger.warning("⚠️ Progress queue full; dropping progress records")


class SafeSink:
    """Wraps a sink so a failing consumer can never disturb the search."""

    def __init__(self, sink: Optional[ProgressSink]):
        self.sink = sink

    def emit(self, record_type: str, **payload: Any) -> None:
        if self.sink is None:
            return
        record = {"type": record_type, **payload}
        try:
            self.sink.emit(record)
        except Exception as e:
            logger.warning(f"Progress sink failed on {record_type!r}: {e}")
