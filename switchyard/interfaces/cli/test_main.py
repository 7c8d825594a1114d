"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from switchyard import __version__
from switchyard.config.errors import BackendError
from switchyard.conftest import FakeBackend
from switchyard.domains.orchestration import Orchestrator

from .main import app

runner = CliRunner()


@pytest.fixture
def local() -> FakeBackend:
    return FakeBackend("local", answers=["4"], chunks=["Two plus ", "two is four."])


@pytest.fixture
def orchestrator(make_registry, local: FakeBackend) -> Orchestrator:
    return Orchestrator(make_registry(local=local, claude=FakeBackend("claude")))


@pytest.fixture
def wired(orchestrator: Orchestrator):
    """Point the CLI at a scripted orchestrator."""
    with (
        patch("switchyard.interfaces.cli.main.build_orchestrator", new=AsyncMock(return_value=orchestrator)),
        patch("switchyard.interfaces.cli.main.get_orchestrator", return_value=orchestrator),
        patch("switchyard.interfaces.cli.main.cleanup_services", new=AsyncMock()) as cleanup,
    ):
        yield cleanup


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"Switchyard v{__version__}" in result.stdout


def test_ask_prints_answer(wired, local: FakeBackend) -> None:
    result = runner.invoke(app, ["ask", "What is 2+2?"])

    assert result.exit_code == 0
    assert "Answer (local)" in result.stdout
    assert "local-only" in result.stdout
    assert local.calls == 1
    wired.assert_awaited_once()


def test_ask_stream_prints_chunks(wired) -> None:
    result = runner.invoke(app, ["ask", "What is 2+2?", "--stream"])

    assert result.exit_code == 0
    assert "Two plus two is four." in result.stdout


def test_ask_failure_exits_nonzero(make_registry) -> None:
    failing = FakeBackend("local", answers=[BackendError("local", "local connection refused")])
    orchestrator = Orchestrator(make_registry(local=failing))

    with (
        patch("switchyard.interfaces.cli.main.build_orchestrator", new=AsyncMock(return_value=orchestrator)),
        patch("switchyard.interfaces.cli.main.cleanup_services", new=AsyncMock()) as cleanup,
    ):
        result = runner.invoke(app, ["ask", "What is 2+2?", "--strategy", "local-only"])

    assert result.exit_code == 1
    assert "local connection refused" in result.stdout
    cleanup.assert_awaited_once()


def test_route_sensitive_query_stays_local(wired, local: FakeBackend) -> None:
    result = runner.invoke(
        app,
        ["route", "My SSN is 123-45-6789, can you help me apply for a loan?", "--priority", "quality"],
    )

    assert result.exit_code == 0
    assert "local-only" in result.stdout
    assert "sensitive" in result.stdout
    assert local.calls == 0


def test_validate_reports_escalation(wired) -> None:
    result = runner.invoke(
        app,
        ["validate", "Explain the difference between TCP and UDP protocols", "I don't know."],
    )

    assert result.exit_code == 0
    assert "FAILED" in result.stdout
    assert "escalate" in result.stdout


def test_cache_stats(wired, orchestrator: Orchestrator) -> None:
    runner.invoke(app, ["ask", "What is 2+2?"])

    result = runner.invoke(app, ["cache-stats"])

    assert result.exit_code == 0
    assert "1 / 1000" in result.stdout
