import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from conftest import StubEvaluator, StubGenerator, sure_for

from tot_workbench.config import SearchConfig
from tot_workbench.main import app, get_client_factory, get_collaborator_factory, search_events
from tot_workbench.simple import SIMPLE_EXAMPLES


class FakeChatClient:
    def __init__(self, reply="Expert A: 8 / (1 - 7/4)... Final solution: 24", chunks=("Round 1", " / Final solution")):
        self.reply = reply
        self.chunks = chunks
        self.prompts = []
        self.closed = False

    async def complete(self, prompt, **kwargs):
        self.prompts.append(prompt)
        return self.reply

    async def stream(self, prompt, **kwargs):
        self.prompts.append(prompt)
        for chunk in self.chunks:
            yield chunk

    async def close(self):
        self.closed = True


@pytest.fixture
def stubs():
    return StubGenerator(["A", "B"]), StubEvaluator(sure_for("A"))


@pytest.fixture
def client(stubs):
    app.dependency_overrides[get_collaborator_factory] = lambda: (lambda: stubs)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def parse_sse(text):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


SEARCH_REQUEST = {
    "problem": "reach 24 from 4,1,8,7",
    "taskType": "game-24",
    "searchMethod": "bfs",
    "maxDepth": 2,
    "candidatesPerStep": 2,
    "maxNodes": 10,
}


def test_search_json_response(client, stubs):
    response = client.post("/api/tree-of-thoughts", json={**SEARCH_REQUEST, "stream": False})

    assert response.status_code == 200
    data = response.json()
    assert data["finalAnswer"] == "A"
    assert data["solved"] is True
    assert data["totalNodes"] == 2
    assert data["model"] == "gpt-3.5-turbo"
    assert data["searchTree"]["children"][0]["isSelected"] is True
    generator, evaluator = stubs
    assert generator.closed and evaluator.closed


def test_search_event_stream(client):
    response = client.post("/api/tree-of-thoughts", json=SEARCH_REQUEST)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    records = parse_sse(response.text)
    types = [r["type"] for r in records]
    assert types[0] == "start"
    assert "explore_node" in types
    assert types[-2:] == ["final_result", "done"]
    assert records[-2]["result"]["finalAnswer"] == "A"
    assert records[-2]["result"]["model"] == "gpt-3.5-turbo"


@pytest.mark.parametrize("body", [
    {**SEARCH_REQUEST, "maxNodes": 0},
    {**SEARCH_REQUEST, "maxDepth": -1},
    {**SEARCH_REQUEST, "searchMethod": "astar"},
    {**SEARCH_REQUEST, "taskType": "poetry"},
    {**SEARCH_REQUEST, "problem": "  "},
    {"maxDepth": 2},
    {**SEARCH_REQUEST, "maxDepth": 1.5},
    {**SEARCH_REQUEST, "maxNodes": "lots"},
])
def test_invalid_search_config_is_a_400(client, stubs, body):
    response = client.post("/api/tree-of-thoughts", json=body)

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Invalid search configuration"
    assert data["details"]
    generator, _ = stubs
    assert generator.calls == []


def test_defaults_file_applies_when_request_omits_fields(client, tmp_path, monkeypatch):
    defaults = tmp_path / "defaults.json"
    defaults.write_text(json.dumps({"searchMethod": "beam", "taskType": "game-24"}))
    monkeypatch.setenv("TOT_CONFIG_PATH", str(defaults))

    response = client.post("/api/tree-of-thoughts", json={"problem": "p", "maxDepth": 1, "stream": False})

    assert response.status_code == 200
    data = response.json()
    assert data["searchMethod"] == "beam"
    assert data["taskType"] == "game-24"


def test_request_fields_override_defaults_file(client, tmp_path, monkeypatch):
    defaults = tmp_path / "defaults.json"
    defaults.write_text(json.dumps({"searchMethod": "beam"}))
    monkeypatch.setenv("TOT_CONFIG_PATH", str(defaults))

    response = client.post("/api/tree-of-thoughts", json={"problem": "p", "searchMethod": "dfs", "stream": False})

    assert response.json()["searchMethod"] == "dfs"


def test_missing_backend_configuration_is_a_500(client):
    def unconfigured():
        raise ValueError("OPEN_API_KEY environment variable is required")

    app.dependency_overrides[get_collaborator_factory] = lambda: unconfigured
    response = client.post("/api/tree-of-thoughts", json={**SEARCH_REQUEST, "stream": False})

    assert response.status_code == 500
    assert "OPEN_API_KEY" in response.json()["details"]


def test_websocket_runs_one_search_per_message(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_text("not json")
        assert websocket.receive_json()["type"] == "error"

        websocket.send_text(json.dumps({**SEARCH_REQUEST, "maxNodes": 0}))
        assert websocket.receive_json()["type"] == "error"

        websocket.send_text(json.dumps(SEARCH_REQUEST))
        records = []
        while True:
            record = websocket.receive_json()
            records.append(record)
            if record["type"] in ("done", "error"):
                break

    assert records[0]["type"] == "start"
    assert records[-1]["type"] == "done"
    assert records[-2]["result"]["finalAnswer"] == "A"


@pytest.fixture
def chat_client(client):
    fake = FakeChatClient()
    app.dependency_overrides[get_client_factory] = lambda: (lambda: fake)
    return fake


def test_simple_tot_json(client, chat_client):
    response = client.post("/api/tree-of-thoughts-simple", json={"problem": "make 24", "numExperts": 4})

    assert response.status_code == 200
    data = response.json()
    assert data["response"] == chat_client.reply
    assert data["numExperts"] == 4
    assert data["maxSteps"] == 5
    assert data["model"] == "gpt-3.5-turbo"
    assert "Imagine 4 different experts" in chat_client.prompts[0]
    assert chat_client.closed


def test_simple_tot_stream(client, chat_client):
    response = client.post("/api/tree-of-thoughts-simple", json={"problem": "make 24", "stream": True})

    records = parse_sse(response.text)
    assert [r["type"] for r in records] == ["start", "chunk", "chunk", "final_result", "done"]
    assert records[-2]["result"]["response"] == "Round 1 / Final solution"
    assert chat_client.closed


@pytest.mark.parametrize("body", [
    {"problem": "make 24", "numExperts": 0},
    {"numExperts": 3},
    {"problem": "make 24", "maxSteps": "several"},
])
def test_simple_tot_rejects_bad_request(client, chat_client, body):
    response = client.post("/api/tree-of-thoughts-simple", json=body)
    assert response.status_code == 400
    assert "error" in response.json()
    assert chat_client.prompts == []


def test_simple_examples(client):
    response = client.get("/api/tree-of-thoughts-simple/examples")
    assert response.status_code == 200
    assert response.json() == SIMPLE_EXAMPLES


async def collect(events_iter):
    return [record async for record in events_iter]


@pytest.mark.asyncio
async def test_disconnect_cancels_search_while_records_flow():
    config = SearchConfig(problem="p", max_depth=4, candidates_per_step=2, max_nodes=100)
    checks = []

    async def gone():
        checks.append(True)
        return True

    records = await collect(search_events(config, StubGenerator(), StubEvaluator(delay=0.05), asyncio.Event(), gone))

    final = records[-2]
    assert final["type"] == "final_result"
    assert final["result"]["cancelled"] is True
    assert final["result"]["totalNodes"] < 31
    assert records[-1] == {"type": "done"}
    assert len(checks) == 1


@pytest.mark.asyncio
async def test_disconnect_check_accepts_plain_callables():
    config = SearchConfig(problem="p", max_depth=4, candidates_per_step=2, max_nodes=100)

    records = await collect(search_events(config, StubGenerator(), StubEvaluator(delay=0.05), asyncio.Event(), lambda: True))

    assert records[-2]["result"]["cancelled"] is True


@pytest.mark.asyncio
async def test_connected_client_gets_the_full_search():
    config = SearchConfig(problem="p", max_depth=2, candidates_per_step=2, max_nodes=100)

    async def still_there():
        return False

    records = await collect(search_events(config, StubGenerator(), StubEvaluator(delay=0.05), asyncio.Event(), still_there))

    assert records[-2]["result"]["cancelled"] is False
    assert records[-2]["result"]["totalNodes"] == 7
