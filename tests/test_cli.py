"""Tests for the click command line interface."""

# pylint: disable=redefined-outer-name

import json
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner

from stats_snapshots import cli as cli_module
from stats_snapshots.cli import cli
from stats_snapshots.config import Settings
from stats_snapshots.container import StatisticsContainer, build_container
from stats_snapshots.sources import (
    ActivityRecord,
    InMemoryPostSource,
    InMemorySnapshotRepository,
    InMemoryUserSource,
    PostRecord,
    UserRecord,
)


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the CLI from reconfiguring structlog during tests."""
    monkeypatch.setattr(cli_module, "setup_logging", lambda **kwargs: None)


@pytest.fixture
def container(tmp_path) -> StatisticsContainer:
    yesterday = datetime.now(timezone.utc).replace(hour=12, minute=0, second=0, microsecond=0) - timedelta(days=1)
    settings = Settings(lock_dir=tmp_path / "locks", retry_delay_seconds=0, retry_max_attempts=1)
    return build_container(
        repository=InMemorySnapshotRepository(),
        post_source=InMemoryPostSource([PostRecord(id=1, user_id=1, views=3, created_at=yesterday)]),
        user_source=InMemoryUserSource(
            [UserRecord(id=1, username="alice", registered_at=yesterday - timedelta(days=10))],
            [ActivityRecord(user_id=1, activity_type="post", occurred_at=yesterday)],
        ),
        settings=settings,
    )


@pytest.fixture
def invoke(container: StatisticsContainer):
    runner = CliRunner()

    def run(*args: str):
        return runner.invoke(cli, list(args), obj={"container_factory": lambda: container})

    return run


# ============================================================================
# calculate
# ============================================================================


def test_calculate_success(invoke, container: StatisticsContainer) -> None:
    result = invoke("calculate")

    assert result.exit_code == 0, result.output
    assert "Statistics Calculation" in result.output
    assert not any(container.settings.lock_dir.iterdir())


def test_calculate_json_report(invoke) -> None:
    result = invoke("calculate", "--json")

    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["total_snapshots"] == 4
    assert report["successful_snapshots"] == 4
    assert report["success_rate"] == 100.0


def test_calculate_unsupported_period(invoke) -> None:
    result = invoke("calculate", "--period", "hourly")

    assert result.exit_code == 1
    assert "hourly" in result.output


def test_calculate_failures_exit_nonzero(tmp_path) -> None:
    settings = Settings(lock_dir=tmp_path / "locks", retry_delay_seconds=0, retry_max_attempts=0)
    empty = build_container(InMemorySnapshotRepository(), InMemoryPostSource(), InMemoryUserSource(), settings)

    result = CliRunner().invoke(cli, ["calculate"], obj={"container_factory": lambda: empty})

    assert result.exit_code == 1
    assert "Failures" in result.output


# ============================================================================
# backfill
# ============================================================================


def test_backfill_dry_run(invoke, container: StatisticsContainer) -> None:
    result = invoke("backfill", "overview", "2023-01-01", "2023-01-03", "--batch-size", "1", "--dry-run")

    assert result.exit_code == 0, result.output
    assert "Backfill Tasks" in result.output
    assert "3 of 3 tasks would be processed" in result.output
    assert container.repository._snapshots == {}  # pylint: disable=protected-access


def test_backfill_run(invoke) -> None:
    result = invoke("backfill", "popular", "2023-01-01", "2023-01-02")

    assert result.exit_code == 0, result.output
    assert "Backfill complete" in result.output
    assert "Days created: 2" in result.output


@pytest.mark.parametrize(
    "args",
    [
        ("overview", "2023-01-05", "2023-01-01"),
        ("overview", "2023-01-01", "2999-01-01"),
        ("overview", "2023-01-01", "2023-01-02", "--batch-size", "0"),
        ("likes", "2023-01-01", "2023-01-02"),
    ],
)
def test_backfill_invalid_input(invoke, args) -> None:
    result = invoke("backfill", *args)

    assert result.exit_code == 1
    assert "✗" in result.output


# ============================================================================
# maintenance
# ============================================================================


def test_cleanup(invoke) -> None:
    result = invoke("cleanup", "--before", "2024-01-01")

    assert result.exit_code == 0, result.output
    assert "Removed 0 expired snapshot(s)" in result.output


def test_cleanup_invalid_date(invoke) -> None:
    result = invoke("cleanup", "--before", "yesterday")

    assert result.exit_code == 1


def test_config_lists_settings(invoke) -> None:
    result = invoke("config")

    assert result.exit_code == 0, result.output
    assert "retry_max_attempts" in result.output
