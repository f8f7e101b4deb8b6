"""Group lifecycle routes: create, join, leave."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ensemble.groups.api._errors import to_http_error
from ensemble.groups.domain.services import MembershipService
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:groups"])
_service = MembershipService()


@router.post("/groups", response_model=dto.GroupCreateResponse, status_code=201)
async def create_group_endpoint(
	payload: dto.GroupCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupCreateResponse:
	try:
		return await _service.create_group(auth_user, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/join", response_model=dto.JoinGroupResponse)
async def join_group_endpoint(
	payload: dto.JoinGroupRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.JoinGroupResponse:
	try:
		return await _service.join_group(auth_user, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/leave", response_model=dto.LeaveGroupResponse)
async def leave_group_endpoint(
	group_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.LeaveGroupResponse:
	try:
		return await _service.leave_group(auth_user, group_id)
	except Exception as exc:
		raise to_http_error(exc) from exc
