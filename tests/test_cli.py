"""
Tests for CLI commands.

Uses typer's CliRunner to drive the connector commands against in-memory sources.
"""

import json
import sys
import types

import pytest
from typer.testing import CliRunner

from tributary.cli.main import app, create_app, load_source
from tributary.exceptions import ConfigurationError
from tributary.protocol import (
    CatalogMessage,
    ConnectionStatus,
    ConnectionStatusMessage,
    FailureType,
    LogMessage,
    RecordMessage,
    SourceStatus,
    SpecMessage,
    StateMessage,
    TraceMessage,
    parse_message,
)
from tributary.testing import InMemorySource, InMemoryStream

runner = CliRunner()

DAY_MS = 24 * 60 * 60 * 1000


def make_source():
    users = InMemoryStream(
        "users",
        [{"id": 1, "updated_at": DAY_MS}],
        cursor_field="updated_at",
        dependencies=["groups"],
    )
    groups = InMemoryStream("groups", [{"id": 10}])
    return InMemorySource([users, groups], properties={"token": {"type": "string", "airbyte_secret": True}})


def messages(result):
    return [parse_message(line) for line in result.stdout.splitlines() if line.startswith("{")]


@pytest.fixture
def source_app():
    return create_app(make_source())


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"token": "s3cr3t"}))
    return path


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "streams": [
                    {"stream": {"name": "users"}, "sync_mode": "incremental"},
                    {"stream": {"name": "groups"}, "sync_mode": "full_refresh"},
                ]
            }
        )
    )
    return path


class TestVersion:
    """Tests for --version flag."""

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "tributary version" in result.output

    def test_version_short_flag(self):
        result = runner.invoke(app, ["-v"])
        assert result.exit_code == 0
        assert "tributary version" in result.output


class TestHelp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "read" in result.output

    def test_read_help(self):
        result = runner.invoke(app, ["read", "--help"])
        assert result.exit_code == 0
        assert "--catalog" in result.output


class TestSpec:
    def test_spec(self, source_app):
        result = runner.invoke(source_app, ["spec"])
        assert result.exit_code == 0
        (message,) = messages(result)
        assert isinstance(message, SpecMessage)
        assert "max_stream_failures" in message.connection_specification["properties"]

    def test_spec_pretty(self, source_app):
        result = runner.invoke(source_app, ["spec-pretty"])
        assert result.exit_code == 0
        assert "token" in result.output
        assert "max_slice_failures" in result.output


class TestCheck:
    def test_succeeded(self, source_app, config_file):
        result = runner.invoke(source_app, ["check", "--config", str(config_file)])
        assert result.exit_code == 0
        message = messages(result)[-1]
        assert isinstance(message, ConnectionStatusMessage)
        assert message.status == ConnectionStatus.SUCCEEDED

    def test_missing_config_file(self, source_app, tmp_path):
        result = runner.invoke(source_app, ["check", "--config", str(tmp_path / "missing.json")])
        assert result.exit_code == 0
        message = messages(result)[-1]
        assert message.status == ConnectionStatus.FAILED
        assert "File not found" in message.message


class TestDiscover:
    def test_catalog(self, source_app, config_file):
        result = runner.invoke(source_app, ["discover", "--config", str(config_file)])
        assert result.exit_code == 0
        (message,) = messages(result)
        assert isinstance(message, CatalogMessage)
        assert [s["name"] for s in message.streams] == ["users", "groups"]

    def test_graph(self, source_app, config_file):
        result = runner.invoke(source_app, ["discover", "--config", str(config_file), "--graph"])
        assert result.exit_code == 0
        assert "Layer 0: groups" in result.output
        assert "Layer 1: users" in result.output


class TestRead:
    def test_read(self, source_app, config_file, catalog_file):
        result = runner.invoke(source_app, ["read", "--config", str(config_file), "--catalog", str(catalog_file)])
        assert result.exit_code == 0

        emitted = messages(result)
        records = [m for m in emitted if isinstance(m, RecordMessage)]
        assert [r.stream for r in records] == ["groups", "users"]

        states = [m for m in emitted if isinstance(m, StateMessage)]
        assert states[0].source_config["redacted_config"] == {"token": "REDACTED"}
        assert states[-1].source_status.status == SourceStatus.SUCCESS
        assert states[-1].data == {"users": {"users": {"cutoff": DAY_MS}}}

        # logs travel as LOG messages so stdout stays pure JSON lines
        assert any(isinstance(m, LogMessage) for m in emitted)
        assert "s3cr3t" not in result.stdout

    def test_read_with_state(self, source_app, config_file, catalog_file, tmp_path):
        state_file = tmp_path / "state.json"
        state_file.write_text(json.dumps({"users": {"users": {"cutoff": 5 * DAY_MS}}}))
        result = runner.invoke(
            source_app,
            ["read", "--config", str(config_file), "--catalog", str(catalog_file), "--state", str(state_file)],
        )
        assert result.exit_code == 0
        states = [m for m in messages(result) if isinstance(m, StateMessage)]
        assert states[-1].data == {"users": {"users": {"cutoff": 5 * DAY_MS}}}

    def test_failed_read_emits_trace(self, config_file, tmp_path):
        stream = InMemoryStream("users", [{"id": 1}], failures={"users": RuntimeError("api down")})
        catalog = tmp_path / "catalog.json"
        catalog.write_text(json.dumps({"streams": [{"stream": {"name": "users"}}]}))

        result = runner.invoke(
            create_app(InMemorySource([stream])), ["read", "--config", str(config_file), "--catalog", str(catalog)]
        )
        assert result.exit_code == 1
        trace = messages(result)[-1]
        assert isinstance(trace, TraceMessage)
        assert trace.message == "api down"
        assert trace.failure_type == FailureType.SYSTEM_ERROR

    def test_unknown_stream_is_config_error(self, source_app, config_file, tmp_path):
        catalog = tmp_path / "catalog.json"
        catalog.write_text(json.dumps({"streams": [{"stream": {"name": "teams"}}]}))

        result = runner.invoke(source_app, ["read", "--config", str(config_file), "--catalog", str(catalog)])
        assert result.exit_code == 1
        trace = messages(result)[-1]
        assert trace.failure_type == FailureType.CONFIG_ERROR
        assert "teams" in trace.message


class TestSourceLoading:
    @pytest.fixture
    def connector_module(self, monkeypatch):
        module = types.ModuleType("fake_connector")
        module.source = make_source()
        module.make_source = make_source
        module.not_a_source = 42
        monkeypatch.setitem(sys.modules, "fake_connector", module)
        return module

    def test_load_instance(self, connector_module):
        assert load_source("fake_connector:source") is connector_module.source

    def test_load_factory(self, connector_module):
        assert isinstance(load_source("fake_connector:make_source"), InMemorySource)

    @pytest.mark.parametrize(
        "reference",
        ["fake_connector", "fake_connector:missing", "fake_connector:not_a_source", "no_such_module_xyz:source"],
    )
    def test_bad_reference(self, connector_module, reference):
        with pytest.raises(ConfigurationError):
            load_source(reference)

    def test_source_option(self, connector_module):
        result = runner.invoke(app, ["--source", "fake_connector:source", "spec"])
        assert result.exit_code == 0
        assert isinstance(messages(result)[0], SpecMessage)

    def test_source_env_var(self, connector_module):
        result = runner.invoke(app, ["spec"], env={"TRIBUTARY_SOURCE": "fake_connector:make_source"})
        assert result.exit_code == 0

    def test_no_source(self, monkeypatch):
        monkeypatch.delenv("TRIBUTARY_SOURCE", raising=False)
        result = runner.invoke(app, ["spec"])
        assert result.exit_code == 2
