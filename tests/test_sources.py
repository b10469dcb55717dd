"""Tests for the in-memory sources, repository persistence and settings."""

# pylint: disable=redefined-outer-name

import json
from datetime import date, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from stats_snapshots.config import Settings
from stats_snapshots.container import build_in_memory_container
from stats_snapshots.exceptions import SnapshotNotFoundError
from stats_snapshots.models import Period, SnapshotType, StatisticsSnapshot
from stats_snapshots.sources import InMemoryPostSource, InMemorySnapshotRepository, InMemoryUserSource, load_activity_data

from tests.conftest import NOW

DAY = Period.daily(date(2024, 1, 9))


def make_snapshot(snapshot_type=SnapshotType.OVERVIEW) -> StatisticsSnapshot:
    return StatisticsSnapshot.create(snapshot_type, DAY, {"total_posts": 1}, now=NOW)


# ============================================================================
# Sources
# ============================================================================


async def test_popular_posts_rejects_unknown_metric(post_source: InMemoryPostSource) -> None:
    with pytest.raises(ValueError):
        await post_source.popular_posts(DAY, metric="shares")


async def test_most_active_users_by_metric(user_source: InMemoryUserSource) -> None:
    by_posts = await user_source.most_active_users(DAY, metric="posts")
    by_logins = await user_source.most_active_users(DAY, limit=1, metric="logins")

    assert by_posts == [
        {"user_id": 1, "username": "alice", "posts": 1},
        {"user_id": 2, "username": "bob", "posts": 1},
    ]
    assert by_logins == [{"user_id": 1, "username": "alice", "logins": 1}]


async def test_has_data_for_period(post_source: InMemoryPostSource, user_source: InMemoryUserSource) -> None:
    quiet = Period.daily(date(2024, 1, 5))

    assert await post_source.has_data_for_period(DAY)
    assert not await post_source.has_data_for_period(quiet)
    assert not await user_source.has_data_for_period(quiet)


# ============================================================================
# Repository
# ============================================================================


async def test_repository_returns_copies() -> None:
    repository = InMemorySnapshotRepository()
    snapshot = make_snapshot()
    await repository.save(snapshot)

    found = await repository.find_by_type_and_period(SnapshotType.OVERVIEW, DAY)
    found.statistics_data["total_posts"] = 99

    again = await repository.find_by_type_and_period("overview", DAY)
    assert again.statistics_data["total_posts"] == 1


async def test_update_requires_existing() -> None:
    with pytest.raises(SnapshotNotFoundError):
        await InMemorySnapshotRepository().update(make_snapshot())


async def test_repository_persists_to_json(tmp_path) -> None:
    path = tmp_path / "store" / "snapshots.json"
    first = InMemorySnapshotRepository(path)
    saved = await first.save(make_snapshot())
    await first.save(make_snapshot(SnapshotType.USERS))

    reopened = InMemorySnapshotRepository(path)

    assert await reopened.exists(SnapshotType.OVERVIEW, DAY)
    restored = await reopened.find_by_type_and_period(SnapshotType.OVERVIEW, DAY)
    assert restored.id == saved.id
    assert len(await reopened.list_snapshots()) == 2
    assert len(await reopened.list_snapshots(SnapshotType.USERS)) == 1


# ============================================================================
# Activity data and settings
# ============================================================================


def test_load_activity_data(tmp_path) -> None:
    path = tmp_path / "activity.json"
    path.write_text(json.dumps({
        "posts": [{"id": 1, "user_id": 1, "created_at": "2024-01-09T10:00:00"}],
        "users": [{"id": 1, "username": "alice", "registered_at": "2023-12-01T00:00:00Z"}],
        "activities": [{"user_id": 1, "activity_type": "login", "occurred_at": "2024-01-09T11:00:00+00:00"}],
    }))

    posts, users, activities = load_activity_data(path)

    assert posts[0].created_at.tzinfo is not None
    assert users[0].username == "alice"
    assert activities[0].activity_type == "login"
    assert load_activity_data(None) == ([], [], [])


def test_in_memory_container_from_settings(tmp_path) -> None:
    path = tmp_path / "activity.json"
    path.write_text(json.dumps({"posts": [{"id": 7, "user_id": 1, "created_at": "2024-01-09T10:00:00"}]}))
    settings = Settings(lock_dir=tmp_path, activity_data_path=path, snapshot_ttl_days=7)

    container = build_in_memory_container(settings)

    assert container.post_source.posts[0].id == 7
    assert container.snapshot_ttl == timedelta(days=7)
    assert container.calculation_command().snapshot_ttl == timedelta(days=7)
    assert container.backfill_command().default_batch_size == settings.backfill_batch_size


def test_settings_validation() -> None:
    settings = Settings(log_level="debug", weekly_schedule_day="Friday", retry_delay_seconds=2, retry_max_attempts=3)

    assert settings.log_level == "DEBUG"
    assert settings.weekly_schedule_day == "fri"
    assert settings.retry_schedule == [2, 4, 6]

    with pytest.raises(PydanticValidationError):
        Settings(timezone="Nowhere/City")
    with pytest.raises(PydanticValidationError):
        Settings(backfill_batch_size=400)
