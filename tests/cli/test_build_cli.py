"""Tests for the ``reindexd build`` command group."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import typer
from typer.testing import CliRunner

from reindexd.cli import build as build_cli
from reindexd.cli import create_app
from reindexd.cli.init import init_workspace
from reindexd.modules.build import BuildNotReadyError
from reindexd.modules.embeddings import EmbeddingRequestError, ProviderRegistry

_runner = CliRunner()

_WORKSPACE_CONFIG = """
[embeddings]
provider = "stub"
model = "stub-model"
dim = 8

[build]
namespace = "rfp_chunks"
batch_size = 100
"""


class DummyContext:
    def __init__(self, obj: Any | None = None) -> None:
        self.obj = obj


@pytest.fixture
def workspace(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    database,
    qdrant_client,
    stub_provider,
) -> Path:
    """Initialized workspace sharing the test database, Qdrant and provider."""

    init_workspace(workspace=tmp_path)
    (tmp_path / "reindexd.toml").write_text(_WORKSPACE_CONFIG, encoding="utf-8")
    monkeypatch.delenv("REINDEXD_WORKSPACE", raising=False)
    monkeypatch.delenv("REINDEXD_EMBEDDING_PROVIDER", raising=False)
    monkeypatch.delenv("REINDEXD_EMBEDDING_MODEL", raising=False)
    monkeypatch.setattr(build_cli, "build_qdrant_client", lambda settings: qdrant_client)
    monkeypatch.setattr(
        build_cli,
        "create_default_provider_registry",
        lambda: ProviderRegistry({"stub": lambda context: stub_provider}),
    )
    return tmp_path


def _invoke(workspace: Path, *args: str):
    return _runner.invoke(
        create_app(),
        ["build", "--workspace", str(workspace), "--log-level", "warning", *args],
    )


def test_build_lifecycle_from_start_to_search(
    workspace: Path,
    seed_chunks,
    chunk_rows,
) -> None:
    seed_chunks("rfp_chunks", chunk_rows(250))

    started = _invoke(workspace, "start", "--collection", "green")
    assert started.exit_code == 0, started.output
    assert "Started build green" in started.output
    assert "progress: 0/250" in started.output

    ran = _invoke(workspace, "run", "green", "--activate")
    assert ran.exit_code == 0, ran.output
    assert "tick processed=100 done=100/250 status=building" in ran.output
    assert "tick processed=0 done=250/250 status=ready" in ran.output
    assert "rfp_chunks/green [active]" in ran.output

    status = _invoke(workspace, "status", "green", "--json")
    payload = json.loads(status.stdout)
    assert payload["status"] == "ready"
    assert payload["is_active"] is True
    assert payload["chunks_done"] == 250

    found = _invoke(workspace, "search", "text of doc-001-c03", "-k", "1", "--json")
    assert found.exit_code == 0, found.output
    (hit,) = json.loads(found.stdout)
    assert hit["chunk_id"] == "doc-001-c03"
    assert hit["collection"] == "green"

    listed = json.loads(_invoke(workspace, "list", "--json").stdout)
    assert [entry["collection"] for entry in listed] == ["green"]

    active = _invoke(workspace, "active")
    assert "rfp_chunks/green [active]" in active.output


def test_tick_reports_progress(workspace: Path, seed_chunks, chunk_rows) -> None:
    seed_chunks("rfp_chunks", chunk_rows(15))
    _invoke(workspace, "start", "-c", "green")

    first = _invoke(workspace, "tick", "green", "--batch-size", "10")
    second = _invoke(workspace, "tick", "green", "--batch-size", "10")

    assert "processed=10 finished=false" in first.output
    assert "cursor: doc-000#9 (doc-000-c09)" in first.output
    assert "processed=5 finished=true" in second.output


def test_activate_building_build_fails(workspace: Path) -> None:
    _invoke(workspace, "start", "-c", "green")

    result = _invoke(workspace, "activate", "green")

    assert result.exit_code == 1
    assert "Build activate failed" in result.output


def test_failed_tick_can_be_resumed(
    workspace: Path,
    seed_chunks,
    chunk_rows,
    stub_provider,
) -> None:
    seed_chunks("rfp_chunks", chunk_rows(5))
    _invoke(workspace, "start", "-c", "green")
    stub_provider.failure = EmbeddingRequestError(
        "TEI request failed: timed out",
        provider="stub",
        model="stub-model",
    )

    failed = _invoke(workspace, "tick", "green")
    assert failed.exit_code == 1
    assert "Build tick failed: TEI request failed: timed out" in failed.output

    stub_provider.failure = None
    resumed = _invoke(workspace, "resume", "green")
    assert resumed.exit_code == 0, resumed.output
    assert "status: building" in resumed.output


def test_index_source_and_deactivate(workspace: Path, seed_chunks, chunk_rows) -> None:
    seed_chunks("rfp_chunks", chunk_rows(5))
    _invoke(workspace, "start", "-c", "green")
    _invoke(workspace, "run", "green", "--activate")
    seed_chunks("rfp_chunks", chunk_rows(2, prefix="new"))

    indexed = _invoke(workspace, "index-source", "new-000")
    assert indexed.exit_code == 0, indexed.output
    assert "Indexed 2 chunks of new-000" in indexed.output

    deactivated = _invoke(workspace, "deactivate")
    assert "Deactivated green" in deactivated.output
    missing = _invoke(workspace, "active")
    assert missing.exit_code == 1
    assert "has no active index" in missing.output


def test_missing_workspace_config_exits(tmp_path: Path) -> None:
    result = _invoke(tmp_path / "empty", "list")

    assert result.exit_code == 1
    assert "Run `reindexd init` first" in result.output


def test_list_without_builds(workspace: Path) -> None:
    result = _invoke(workspace, "list")

    assert result.exit_code == 0
    assert "No builds found." in result.output


def test_require_context_without_obj_exits(
    capsys: pytest.CaptureFixture[str],
) -> None:
    with pytest.raises(typer.Exit) as excinfo:
        build_cli._require_context(DummyContext())

    assert excinfo.value.exit_code == 1
    assert "context not initialized" in capsys.readouterr().out


def test_handle_service_failure_logs_and_exits(
    stub_logger,
    capsys: pytest.CaptureFixture[str],
) -> None:
    error = BuildNotReadyError("Build 'green' is building")

    with pytest.raises(typer.Exit) as excinfo:
        build_cli._handle_service_failure("activate", error, logger=stub_logger)

    assert excinfo.value.exit_code == 1
    assert "Build activate failed" in capsys.readouterr().out
    level, payload = stub_logger.events[-1]
    assert level == "error"
    assert payload["message"] == "build-action-failed"
    assert payload["error_type"] == "BuildNotReadyError"
