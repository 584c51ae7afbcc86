from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from flowcascade.engine import (
    CascadeConfig,
    CascadeConnector,
    ConfigurationError,
    FileEndpoint,
    ProcessUnit,
    SinkMode,
    definition_from_mapping,
    load_config,
    load_definition,
)
from flowcascade.engine.config import DEFAULT_SHUTDOWN_TIMEOUT


def test_config_defaults():
    config = CascadeConfig()

    assert config.max_concurrent_units == 0
    assert config.shutdown_timeout == DEFAULT_SHUTDOWN_TIMEOUT == 300.0
    assert config.log_dir is None
    assert config.run_id.startswith("cascade-")
    assert config.run_log_path("anything") is None


def test_config_from_mapping_keeps_extra_keys(tmp_path):
    config = CascadeConfig.from_mapping(
        {
            "max_concurrent_units": 4,
            "shutdown_timeout": 12,
            "log_dir": str(tmp_path / "logs"),
            "run_id": "nightly",
            "owner": "etl",
        }
    )

    assert config.max_concurrent_units == 4
    assert config.shutdown_timeout == 12.0
    assert config.log_dir == (tmp_path / "logs").resolve()
    assert config.extra == {"owner": "etl"}
    assert config.run_log_path() == config.log_dir / "nightly.jsonl"
    assert config.run_log_path("daily load/a+b") == config.log_dir / "nightly-daily_load_a_b.jsonl"


@pytest.mark.parametrize(
    "mapping",
    [
        {"max_concurrent_units": -1},
        {"shutdown_timeout": 0},
        {"max_concurrent_units": "many"},
    ],
)
def test_config_rejects_invalid_values(mapping):
    with pytest.raises(ConfigurationError):
        CascadeConfig.from_mapping(mapping)


def test_config_from_yaml_and_json(tmp_path):
    yaml_path = tmp_path / "cascade.yaml"
    yaml_path.write_text("max_concurrent_units: 2\n", encoding="utf8")
    json_path = tmp_path / "cascade.json"
    json_path.write_text(json.dumps({"shutdown_timeout": 30}), encoding="utf8")
    empty_path = tmp_path / "empty.yml"
    empty_path.write_text("", encoding="utf8")

    assert load_config(yaml_path).max_concurrent_units == 2
    assert CascadeConfig.from_file(json_path).shutdown_timeout == 30.0
    assert CascadeConfig.from_file(empty_path).max_concurrent_units == 0


def test_config_file_must_be_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf8")

    with pytest.raises(ConfigurationError):
        CascadeConfig.from_file(path)
    with pytest.raises(FileNotFoundError):
        CascadeConfig.from_file(tmp_path / "absent.yaml")


def _write_definition(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf8")
    return path


def test_load_definition_builds_process_units(tmp_path):
    path = _write_definition(
        tmp_path / "pipeline.yaml",
        {
            "name": "nightly",
            "tags": "etl",
            "max_concurrent_units": 2,
            "units": [
                {"name": "extract", "command": "echo extract", "sinks": "raw.csv"},
                {
                    "name": "transform",
                    "command": ["python", "transform.py"],
                    "sources": ["raw.csv"],
                    "sinks": ["clean.csv"],
                    "sink_mode": "replace",
                    "cwd": "work",
                    "env": {"LEVEL": 3},
                    "runs_locally": True,
                    "stop_on_exit": False,
                },
            ],
        },
    )

    cascade_def = load_definition(path)

    assert cascade_def.name == "nightly"
    assert cascade_def.tags == "etl"
    assert cascade_def.max_concurrent_units == 2
    extract, transform = cascade_def.units
    assert isinstance(extract, ProcessUnit)
    assert extract.shell is True
    assert extract.cwd == tmp_path.resolve()
    assert extract.sinks() == (FileEndpoint(tmp_path / "raw.csv"),)
    assert transform.command == ["python", "transform.py"]
    assert transform.cwd == tmp_path.resolve() / "work"
    assert transform.env == {"LEVEL": "3"}
    assert transform.runs_locally is True
    assert transform.stop_on_exit is False
    assert transform.sinks()[0].mode is SinkMode.REPLACE
    assert transform.sources()[0].mode is SinkMode.KEEP

    cascade = CascadeConnector().connect_def(cascade_def)
    assert cascade.name == "nightly"
    assert cascade.max_concurrent_units == 2
    assert cascade.predecessors(transform) == [extract]


def test_definition_without_name_is_auto_named(tmp_path):
    cascade_def = definition_from_mapping(
        {"units": [{"name": "a", "command": "true"}, {"name": "b", "command": "true"}]},
        tmp_path,
    )

    assert cascade_def.name is None
    assert cascade_def.max_concurrent_units is None
    assert CascadeConnector().connect_def(cascade_def).name == "a+b"


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"units": []},
        {"units": [{"command": "true"}]},
        {"units": [{"name": "a"}]},
        {"units": [{"name": "a", "command": "true", "unknown": 1}]},
        {"units": [{"name": "a", "command": "true", "sink_mode": "append"}]},
        {"units": [{"name": "a", "command": "true", "sinks": {"not": "a list"}}]},
        {"units": [{"name": "a", "command": "true"}], "max_concurrent_units": -2},
    ],
)
def test_invalid_definitions_raise_configuration_error(data, tmp_path):
    with pytest.raises(ConfigurationError):
        definition_from_mapping(data, tmp_path)


def test_unparseable_definition(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("units: [unclosed\n", encoding="utf8")

    with pytest.raises(ConfigurationError):
        load_definition(path)


def test_json_definition(tmp_path):
    path = tmp_path / "pipeline.json"
    path.write_text(json.dumps({"units": [{"name": "only", "command": "true"}]}), encoding="utf8")

    cascade_def = load_definition(path)

    assert [u.name for u in cascade_def.units] == ["only"]
