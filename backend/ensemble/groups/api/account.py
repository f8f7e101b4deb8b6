"""Account routes: deletion, notification tokens and claims maintenance."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ensemble.groups.api._errors import to_http_error
from ensemble.groups.domain.services import MembershipService
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:account"])
_service = MembershipService()


@router.delete("/users/me", response_model=dto.DeleteAccountResponse)
async def delete_self_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.DeleteAccountResponse:
	try:
		return await _service.delete_self(auth_user)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.delete("/users/{user_id}", response_model=dto.DeleteAccountResponse)
async def delete_user_endpoint(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.DeleteAccountResponse:
	try:
		return await _service.delete_user(auth_user, user_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/users/me/notification-tokens", response_model=dto.NotificationTokenResponse)
async def register_notification_token_endpoint(
	payload: dto.NotificationTokenRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.NotificationTokenResponse:
	try:
		return await _service.register_notification_token(auth_user, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/admin/claims/migrate", response_model=dto.ClaimsMigrationResponse)
async def migrate_claims_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.ClaimsMigrationResponse:
	try:
		return await _service.migrate_all_claims(auth_user)
	except Exception as exc:
		raise to_http_error(exc) from exc
