from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ensemble.groups.domain import repo as repo_module
from ensemble.groups.domain.event_records import EventRecordService
from ensemble.groups.domain.exceptions import NotFoundError, PermissionDeniedError
from ensemble.groups.domain.models import RosterSlot, ServiceSong
from ensemble.groups.jobs.notification_cleanup import NotificationCleanupJob
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser

HEAD = AuthenticatedUser(id="h", groups={"g1": "head"})
MEMBER = AuthenticatedUser(id="u", groups={"g1": "member"})


async def _seed_group(seed) -> None:
	await seed.group(
		"g1",
		[
			RosterSlot(id="h", name="Director", role="head", has_account=True, account_uid="h", voice="tenor"),
			RosterSlot(id="s1", name="Uma", has_account=True, account_uid="u", voice="alto"),
			RosterSlot(id="s2", name="Bob"),
			RosterSlot(id="s3", name="Cy"),
		],
	)


@pytest.mark.asyncio
async def test_service_lifecycle_feeds_summary(seed):
	await _seed_group(seed)
	service = EventRecordService()

	record = await service.create_record(
		HEAD,
		"g1",
		dto.ServiceCreateRequest(date="2024-03-03", title="Sunday", songs=[ServiceSong(song_id="x", song_title="Ave")]),
	)
	await service.vote_attendance(MEMBER, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s1", present=True))
	await service.vote_attendance(HEAD, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s2", present=False))
	summary = await service.get_summary(MEMBER, "g1")
	assert summary.total_services == 1
	assert summary.attendance_trend == []
	assert summary.top_songs[0].song_id == "x"

	await service.finalize(HEAD, "g1", record.id)

	summary = await service.get_summary(MEMBER, "g1")
	assert summary.attendance_trend[0].present == 3
	assert summary.attendance_trend[0].total == 4
	assert summary.member_stats["s2"].absent_count == 1


@pytest.mark.asyncio
async def test_vote_rules(seed):
	await _seed_group(seed)
	service = EventRecordService()
	record = await service.create_record(HEAD, "g1", dto.ServiceCreateRequest(date="2024-03-03"))

	with pytest.raises(PermissionDeniedError):
		await service.vote_attendance(MEMBER, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s2"))
	with pytest.raises(NotFoundError):
		await service.vote_attendance(MEMBER, "g1", record.id, dto.AttendanceVoteRequest(slot_id="ghost"))

	updated = await service.vote_attendance(MEMBER, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s1"))
	updated = await service.vote_attendance(
		MEMBER, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s1", present=False)
	)
	assert updated.confirmed_members == []
	assert updated.absent_members == ["s1"]

	await service.finalize(HEAD, "g1", record.id)
	with pytest.raises(PermissionDeniedError):
		await service.vote_attendance(MEMBER, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s1"))
	corrected = await service.vote_attendance(HEAD, "g1", record.id, dto.AttendanceVoteRequest(slot_id="s1"))
	assert corrected.confirmed_members == ["s1"]


@pytest.mark.asyncio
async def test_soft_delete_and_restore(seed):
	await _seed_group(seed)
	service = EventRecordService()
	record = await service.create_record(HEAD, "g1", dto.ServiceCreateRequest(date="2024-03-03"))

	deleted = await service.soft_delete(HEAD, "g1", record.id)
	assert deleted.deleted_at is not None
	assert (await service.get_summary(HEAD, "g1")).total_services == 0
	assert await service.list_records(HEAD, "g1") == []
	with pytest.raises(NotFoundError):
		await service.update_songs(HEAD, "g1", record.id, dto.SongsUpdateRequest(songs=[]))

	restored = await service.restore(HEAD, "g1", record.id)
	assert restored.deleted_at is None
	assert (await service.get_summary(HEAD, "g1")).total_services == 1


@pytest.mark.asyncio
async def test_record_writes_require_elevated_role(seed):
	await _seed_group(seed)
	service = EventRecordService()

	with pytest.raises(PermissionDeniedError):
		await service.create_record(MEMBER, "g1", dto.ServiceCreateRequest(date="2024-03-03"))
	with pytest.raises(NotFoundError):
		await service.create_record(
			AuthenticatedUser(id="h", groups={"g9": "head"}), "g9", dto.ServiceCreateRequest(date="2024-03-03")
		)


@pytest.mark.asyncio
async def test_notification_cleanup_deletes_expired_records(seed, store):
	now = datetime(2024, 6, 1, tzinfo=timezone.utc)
	await store.set(f"{repo_module.NOTIFICATIONS}/old", {"created_at": (now - timedelta(days=31)).isoformat()})
	await store.set(f"{repo_module.NOTIFICATIONS}/fresh", {"created_at": (now - timedelta(days=2)).isoformat()})
	await store.set(f"{repo_module.NOTIFICATIONS}/undated", {"title": "hello"})

	deleted = await NotificationCleanupJob().run_once(now=now)

	assert deleted == 1
	assert await seed.load(f"{repo_module.NOTIFICATIONS}/old") is None
	assert await seed.load(f"{repo_module.NOTIFICATIONS}/fresh") is not None
	assert await seed.load(f"{repo_module.NOTIFICATIONS}/undated") is not None
