"""Roster routes: claim, merge and update slots."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ensemble.groups.api._errors import to_http_error
from ensemble.groups.domain.services import MembershipService
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:members"])
_service = MembershipService()


@router.post("/groups/{group_id}/members/claim", response_model=dto.ClaimMemberResponse)
async def claim_member_endpoint(
	group_id: str,
	payload: dto.ClaimMemberRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.ClaimMemberResponse:
	try:
		return await _service.claim_member(auth_user, group_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/members/merge", response_model=dto.MergeMembersResponse)
async def merge_members_endpoint(
	group_id: str,
	payload: dto.MergeMembersRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MergeMembersResponse:
	try:
		return await _service.merge_members(auth_user, group_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.patch("/groups/{group_id}/members/{slot_id}", response_model=dto.MemberResponse)
async def update_member_endpoint(
	group_id: str,
	slot_id: str,
	payload: dto.MemberUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MemberResponse:
	try:
		return await _service.update_member(auth_user, group_id, slot_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc
