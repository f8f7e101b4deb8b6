"""Event record routes."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from ensemble.groups.api._errors import to_http_error
from ensemble.groups.domain.event_records import EventRecordService
from ensemble.groups.domain.models import ServiceRecord
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:services"])
_service = EventRecordService()


@router.post("/groups/{group_id}/services", response_model=ServiceRecord, status_code=201)
async def create_service_endpoint(
	group_id: str,
	payload: dto.ServiceCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.create_record(auth_user, group_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/services", response_model=List[ServiceRecord])
async def list_services_endpoint(
	group_id: str,
	include_deleted: bool = False,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[ServiceRecord]:
	try:
		return await _service.list_records(auth_user, group_id, include_deleted=include_deleted)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/services/{service_id}/attendance", response_model=ServiceRecord)
async def vote_attendance_endpoint(
	group_id: str,
	service_id: str,
	payload: dto.AttendanceVoteRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.vote_attendance(auth_user, group_id, service_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/services/{service_id}/finalize", response_model=ServiceRecord)
async def finalize_service_endpoint(
	group_id: str,
	service_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.finalize(auth_user, group_id, service_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/services/{service_id}/reopen", response_model=ServiceRecord)
async def reopen_service_endpoint(
	group_id: str,
	service_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.finalize(auth_user, group_id, service_id, finalized=False)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.put("/groups/{group_id}/services/{service_id}/songs", response_model=ServiceRecord)
async def update_songs_endpoint(
	group_id: str,
	service_id: str,
	payload: dto.SongsUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.update_songs(auth_user, group_id, service_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.delete("/groups/{group_id}/services/{service_id}", response_model=ServiceRecord)
async def delete_service_endpoint(
	group_id: str,
	service_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.soft_delete(auth_user, group_id, service_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/services/{service_id}/restore", response_model=ServiceRecord)
async def restore_service_endpoint(
	group_id: str,
	service_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ServiceRecord:
	try:
		return await _service.restore(auth_user, group_id, service_id)
	except Exception as exc:
		raise to_http_error(exc) from exc
