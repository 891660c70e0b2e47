import json
import time
import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

import uvicorn
from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .collaborators import ThoughtEvaluator, ThoughtGenerator, create_default_collaborators
from .config import ConfigurationError, SearchConfig, load_search_defaults
from .engine import run_search
from .events import QueueSink
from .llm import ChatCompletionsClient
from .simple import SimpleToTRequest, get_simple_examples, run_simple_tot, stream_simple_tot


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Tree-of-Thoughts workbench")

# Allow CORS for local frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

# seconds between queue polls and between client disconnect checks
DISCONNECT_POLL_INTERVAL = 0.2

CollaboratorFactory = Callable[[], Tuple[ThoughtGenerator, ThoughtEvaluator]]
ClientFactory = Callable[[], ChatCompletionsClient]


class ToTRequestBody(BaseModel):
    problem: str
    taskType: Optional[str] = None
    searchMethod: Optional[str] = None
    maxDepth: Optional[int] = None
    candidatesPerStep: Optional[int] = None
    maxNodes: Optional[int] = None
    temperature: Optional[float] = None
    modelName: Optional[str] = None
    stream: bool = True


class SimpleToTRequestBody(BaseModel):
    problem: str
    numExperts: int = 3
    maxSteps: int = 5
    modelName: str = "gpt-3.5-turbo"
    temperature: float = 0.8
    stream: bool = False


def get_collaborator_factory() -> CollaboratorFactory:
    return create_default_collaborators


def get_client_factory() -> ClientFactory:
    return ChatCompletionsClient


def build_search_config(data: Dict[str, Any]) -> SearchConfig:
    fields = {k: v for k, v in data.items() if k != "stream"}
    return SearchConfig.from_mapping(fields, defaults=load_search_defaults())


def sse(record: Dict[str, Any]) -> str:
    return f"data: {json.dumps(record, ensure_ascii=False)}\n\n"


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=400, content={"error": "Invalid search configuration", "details": str(exc)})


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # malformed bodies (missing problem, wrong types) are configuration errors too
    return JSONResponse(status_code=400, content={"error": "Invalid search configuration", "details": _describe_validation_errors(exc)})


def _make_collaborators(factory: CollaboratorFactory) -> Tuple[ThoughtGenerator, ThoughtEvaluator]:
    try:
        return factory()
    except ValueError as e:
        # missing API key and similar server-side setup problems
        logger.error(f"Cannot build collaborators: {e}")
        raise RuntimeError(f"Search backend is not configured: {e}")


async def _run_and_close(config: SearchConfig, generator: ThoughtGenerator, evaluator: ThoughtEvaluator, **kwargs):
    try:
        return await run_search(None, config, generator=generator, evaluator=evaluator, **kwargs)
    finally:
        await generator.close()
        await evaluator.close()


async def search_events(
    config: SearchConfig,
    generator: ThoughtGenerator,
    evaluator: ThoughtEvaluator,
    cancel_event: asyncio.Event,
    is_disconnected: Optional[Callable[[], Any]] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Run a search in the background and yield its progress records.

    Ends with ``final_result`` and ``done``, or with ``error``.
    """
    sink = QueueSink()
    search_task = asyncio.ensure_future(
        _run_and_close(config, generator, evaluator, sink=sink, cancel_event=cancel_event)
    )
    last_check = time.monotonic()
    try:
        while not (search_task.done() and sink.queue.empty()):
            try:
                record = await asyncio.wait_for(sink.queue.get(), timeout=DISCONNECT_POLL_INTERVAL)
            except asyncio.TimeoutError:
                record = None

            # throttled by wall clock, independent of record traffic
            now = time.monotonic()
            if is_disconnected is not None and not cancel_event.is_set() and now - last_check >= DISCONNECT_POLL_INTERVAL:
                last_check = now
                disconnected = is_disconnected()
                if inspect.isawaitable(disconnected):
                    disconnected = await disconnected
                if disconnected:
                    logger.info("[SSE] Client disconnected, cancelling search")
                    cancel_event.set()

            if record is not None:
                yield record

        result = search_task.result()
        payload = result.to_dict()
        payload["model"] = config.model_name
        yield {"type": "final_result", "result": payload}
        yield {"type": "done"}
    except Exception as e:
        logger.exception("Thought search failed")
        yield {"type": "error", "error": "Thought tree search failed", "details": str(e)}
    finally:
        if not search_task.done():
            cancel_event.set()


@app.post("/api/tree-of-thoughts")
async def tree_of_thoughts(
    body: ToTRequestBody,
    request: Request,
    factory: CollaboratorFactory = Depends(get_collaborator_factory),
):
    config = build_search_config(body.model_dump())
    try:
        generator, evaluator = _make_collaborators(factory)
    except RuntimeError as e:
        return JSONResponse(status_code=500, content={"error": "Thought tree search failed", "details": str(e)})

    if body.stream:
        cancel_event = asyncio.Event()

        async def event_stream():
            async for record in search_events(config, generator, evaluator, cancel_event, request.is_disconnected):
                yield sse(record)

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    try:
        result = await _run_and_close(config, generator, evaluator)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.exception("Thought search failed")
        return JSONResponse(status_code=500, content={"error": "Thought tree search failed", "details": str(e)})
    payload = result.to_dict()
    payload["model"] = config.model_name
    return payload


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    factory: CollaboratorFactory = Depends(get_collaborator_factory),
):
    await websocket.accept()
    logger.info("[WS] Connected.")
    cancel_event = asyncio.Event()
    try:
        while True:
            data = await websocket.receive_text()
            logger.info(f"[WS] Received request len={len(data)}")
            try:
                payload = json.loads(data)
                if not isinstance(payload, dict):
                    raise ConfigurationError("request must be a JSON object")
                config = build_search_config(payload)
                generator, evaluator = _make_collaborators(factory)
            except (ValueError, RuntimeError) as e:
                # json.JSONDecodeError and ConfigurationError are ValueErrors
                await websocket.send_text(json.dumps({"type": "error", "error": "Invalid search request", "details": str(e)}))
                continue

            cancel_event = asyncio.Event()
            async for record in search_events(config, generator, evaluator, cancel_event):
                await websocket.send_text(json.dumps(record, ensure_ascii=False))
            logger.info("[WS] Search finished.")
    except WebSocketDisconnect as e:
        cancel_event.set()
        logger.info(f"[WS] Disconnected: code={getattr(e, 'code', None)}")


@app.post("/api/tree-of-thoughts-simple")
async def tree_of_thoughts_simple(
    body: SimpleToTRequestBody,
    client_factory: ClientFactory = Depends(get_client_factory),
):
    simple_request = SimpleToTRequest(
        problem=body.problem,
        num_experts=body.numExperts,
        max_steps=body.maxSteps,
        model_name=body.modelName,
        temperature=body.temperature,
    )
    try:
        client = client_factory()
    except ValueError as e:
        return JSONResponse(status_code=500, content={"error": "Simple tree of thoughts failed", "details": str(e)})

    if body.stream:
        async def event_stream():
            try:
                async for record in stream_simple_tot(simple_request, client):
                    yield sse(record)
                yield sse({"type": "done"})
            except Exception as e:
                logger.exception("Simple ToT stream failed")
                yield sse({"type": "error", "error": "Simple tree of thoughts failed", "details": str(e)})
            finally:
                await client.close()

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    try:
        return await run_simple_tot(simple_request, client)
    except Exception as e:
        logger.exception("Simple ToT failed")
        return JSONResponse(status_code=500, content={"error": "Simple tree of thoughts failed", "details": str(e)})
    finally:
        await client.close()


@app.get("/api/tree-of-thoughts-simple/examples")
async def tree_of_thoughts_simple_examples():
    return get_simple_examples()


if __name__ == "__main__":
    uvicorn.run("tot_workbench.main:app", host="0.0.0.0", port=8000, reload=True)
