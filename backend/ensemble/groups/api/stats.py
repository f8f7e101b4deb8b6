"""Statistics summary read and the historical backfill trigger."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ensemble.groups.api._errors import to_http_error
from ensemble.groups.domain.event_records import EventRecordService
from ensemble.groups.jobs.backfill import StatsBackfillJob
from ensemble.groups.domain.models import StatsSummary
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:stats"])
_service = EventRecordService()
_backfill = StatsBackfillJob()


@router.get("/groups/{group_id}/stats", response_model=StatsSummary)
async def get_stats_endpoint(
	group_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> StatsSummary:
	try:
		summary = await _service.get_summary(auth_user, group_id)
	except Exception as exc:
		raise to_http_error(exc) from exc
	return summary or StatsSummary()


@router.post("/admin/stats/backfill", response_model=dto.BackfillResponse)
async def backfill_stats_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.BackfillResponse:
	try:
		return await _backfill.run(auth_user)
	except Exception as exc:
		raise to_http_error(exc) from exc
