from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ensemble.groups.domain import repo as repo_module
from ensemble.groups.domain.exceptions import PermissionDeniedError
from ensemble.groups.domain.models import RosterSlot, ServiceRecord
from ensemble.groups.jobs.backfill import StatsBackfillJob
from ensemble.groups.stats.aggregator import SERVICE_PATTERN
from ensemble.infra.auth import AuthenticatedUser
from ensemble.settings import settings


def _roster(count: int) -> list[RosterSlot]:
	return [RosterSlot(id=f"s{idx}", name=f"Singer {idx}") for idx in range(1, count + 1)]


@pytest.mark.asyncio
async def test_backfill_requires_super_admin():
	job = StatsBackfillJob()
	with pytest.raises(PermissionDeniedError):
		await job.run(AuthenticatedUser(id="u1", email="someone@ensemble.test"))


@pytest.mark.asyncio
async def test_backfill_finalizes_history_and_overwrites_summary(seed, store, monkeypatch):
	monkeypatch.setattr(settings, "backfill_batch_size", 2)
	await seed.group("g1", _roster(4))
	for day in range(1, 13):
		await seed.service("g1", ServiceRecord(id=f"e{day:02d}", date=f"2024-01-{day:02d}", absent_members=["s1"]))
	await seed.service(
		"g1",
		ServiceRecord(id="gone", date="2024-02-01", deleted_at=datetime(2024, 2, 2, tzinfo=timezone.utc)),
	)
	await store.set(repo_module.summary_path("g1"), {"total_services": 999})

	response = await StatsBackfillJob().run(AuthenticatedUser(id="root", email="root@ensemble.test"))

	assert response.processed == 1
	assert response.errors == 0
	assert response.services_marked_finalized == 12
	deleted = await seed.load(repo_module.service_path("g1", "gone"))
	assert deleted["is_finalized"] is False
	summary = await seed.load(repo_module.summary_path("g1"))
	assert summary["total_services"] == 12
	assert len(summary["attendance_trend"]) == 12
	assert summary["attendance_trend"][0] == {"date": "2024-01-01", "percentage": 75, "present": 3, "total": 4}


@pytest.mark.asyncio
async def test_backfill_is_safe_to_rerun(seed):
	await seed.group("g1", _roster(2))
	await seed.service("g1", ServiceRecord(id="e1", date="2024-01-01"))
	job = StatsBackfillJob()

	first = await job.run_once()
	summary_first = await seed.load(repo_module.summary_path("g1"))
	second = await job.run_once()
	summary_second = await seed.load(repo_module.summary_path("g1"))

	assert first.services_marked_finalized == 1
	assert second.services_marked_finalized == 0
	assert summary_first == summary_second


@pytest.mark.asyncio
async def test_backfill_logs_and_skips_failing_groups(seed, monkeypatch):
	await seed.group("good", _roster(2))
	await seed.group("bad", _roster(2))
	job = StatsBackfillJob()
	original = job.repo.list_services

	async def _flaky(group_id: str):
		if group_id == "bad":
			raise RuntimeError("corrupt group")
		return await original(group_id)

	monkeypatch.setattr(job.repo, "list_services", _flaky)

	response = await job.run_once()

	assert response.total == 2
	assert response.processed == 1
	assert response.errors == 1
	assert await seed.load(repo_module.summary_path("good")) is not None


@pytest.mark.asyncio
async def test_backfill_marks_records_without_firing_write_triggers(seed, store):
	await seed.group("g1", _roster(2))
	for day in range(1, 4):
		await seed.service("g1", ServiceRecord(id=f"e{day}", date=f"2024-01-0{day}"))
	fired = []

	async def _record(change):
		fired.append(change.path)

	store.on_write(SERVICE_PATTERN, _record)

	response = await StatsBackfillJob().run(AuthenticatedUser(id="root", email="root@ensemble.test"))

	assert response.services_marked_finalized == 3
	assert fired == []
	summary = await seed.load(repo_module.summary_path("g1"))
	assert len(summary["attendance_trend"]) == 3
