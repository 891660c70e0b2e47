import json

import pytest

from tot_workbench.config import (
    ConfigurationError,
    SearchConfig,
    SearchMethod,
    TaskType,
    load_search_defaults,
)


def test_defaults():
    config = SearchConfig(problem="p")
    assert config.search_method == SearchMethod.BFS
    assert config.task_type == TaskType.CUSTOM
    assert config.max_depth >= 1
    assert config.candidates_per_step >= 1
    assert config.max_nodes >= 1
    assert config.evaluation_temperature == 0.3


def test_string_values_are_coerced_to_enums():
    config = SearchConfig(problem="p", search_method="beam", task_type="logical-puzzle")
    assert config.search_method is SearchMethod.BEAM
    assert config.task_type is TaskType.LOGICAL_PUZZLE


@pytest.mark.parametrize("overrides", [
    {"search_method": "astar"},
    {"task_type": "poetry"},
    {"max_depth": 0},
    {"candidates_per_step": 0},
    {"max_nodes": 0},
    {"max_nodes": -3},
    {"max_depth": 2.5},
    {"max_depth": True},
    {"temperature": 3.0},
    {"problem": "   "},
    {"model_name": ""},
])
def test_invalid_values_raise_configuration_error(overrides):
    params = {"problem": "p"}
    params.update(overrides)
    with pytest.raises(ConfigurationError):
        SearchConfig(**params)


def test_configuration_error_is_a_value_error():
    assert issubclass(ConfigurationError, ValueError)


def test_from_mapping_accepts_wire_keys():
    config = SearchConfig.from_mapping({
        "problem": "reach 24",
        "taskType": "game-24",
        "searchMethod": "dfs",
        "maxDepth": 4,
        "candidatesPerStep": 2,
        "maxNodes": 12,
        "temperature": 0.2,
        "modelName": "some-model",
        "unknown": "ignored",
        "stream": True,
    })
    assert config.search_method == SearchMethod.DFS
    assert config.task_type == TaskType.GAME_24
    assert (config.max_depth, config.candidates_per_step, config.max_nodes) == (4, 2, 12)
    assert config.model_name == "some-model"


def test_from_mapping_request_overrides_defaults_and_none_is_skipped():
    config = SearchConfig.from_mapping(
        {"problem": "p", "maxDepth": None, "maxNodes": 7},
        defaults={"maxDepth": 5, "maxNodes": 50},
    )
    assert config.max_depth == 5
    assert config.max_nodes == 7


def test_from_mapping_requires_problem():
    with pytest.raises(ConfigurationError):
        SearchConfig.from_mapping({"maxDepth": 2})


def test_to_dict_round_trips_through_from_mapping():
    config = SearchConfig(problem="p", search_method="beam", max_nodes=9)
    assert SearchConfig.from_mapping(config.to_dict()) == config


def test_load_search_defaults_filters_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"maxDepth": 4, "problem": "not allowed", "bogus": 1}))
    assert load_search_defaults(str(path)) == {"maxDepth": 4}


def test_load_search_defaults_from_env(tmp_path, monkeypatch):
    path = tmp_path / "defaults.json"
    path.write_text(json.dumps({"max_nodes": 30}))
    monkeypatch.setenv("TOT_CONFIG_PATH", str(path))
    assert load_search_defaults() == {"max_nodes": 30}


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_load_search_defaults_ignores_broken_files(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)
    assert load_search_defaults(str(path)) == {}


def test_load_search_defaults_missing_file(tmp_path):
    assert load_search_defaults(str(tmp_path / "absent.json")) == {}
