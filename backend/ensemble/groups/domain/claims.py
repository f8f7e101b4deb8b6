"""Identity sync and claims-first authorization.

Claims are a cache of ``UserRecord.memberships``. Sync runs after the
membership transaction commits and may fail or lag, so every check that
finds the claims insufficient re-reads the user record before denying.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ensemble.groups.domain import policies, repo as repo_module
from ensemble.groups.domain.exceptions import PermissionDeniedError, UnauthenticatedError
from ensemble.groups.domain.models import AuthorizationClaims, UserRecord
from ensemble.infra.auth import AuthenticatedUser
from ensemble.infra.identity import IdentityProvider, get_identity_provider
from ensemble.obs import metrics as obs_metrics
from ensemble.settings import is_super_admin_email

log = logging.getLogger(__name__)


def build_claims(user: UserRecord) -> AuthorizationClaims:
	groups: Dict[str, str] = {}
	for membership in user.memberships:
		if membership.group_id and membership.role:
			groups[membership.group_id] = membership.role
	if not groups and user.group_id and user.role:
		groups[user.group_id] = user.role
	return AuthorizationClaims(groups=groups, super_admin=is_super_admin_email(user.email))


def require_caller(caller: Optional[AuthenticatedUser]) -> AuthenticatedUser:
	if caller is None or not caller.id:
		raise UnauthenticatedError()
	return caller


class ClaimsSyncer:
	"""Recomputes a user's claims from the record store."""

	def __init__(
		self,
		repository: repo_module.GroupsRepository | None = None,
		identity: IdentityProvider | None = None,
	) -> None:
		self.repo = repository or repo_module.GroupsRepository()
		self.identity = identity or get_identity_provider()

	async def sync_user_claims(self, user_id: str) -> Dict[str, Any]:
		user = await self.repo.get_user(user_id)
		claims = build_claims(user).to_claims() if user is not None else {}
		await self.identity.set_custom_claims(user_id, claims)
		log.info("claims_synced", extra={"target_user": user_id, "group_count": len(claims.get("groups", {}))})
		return claims

	async def sync_best_effort(self, user_id: str) -> None:
		"""Sync outside the membership transaction; failures only get logged."""
		try:
			await self.sync_user_claims(user_id)
		except Exception:
			obs_metrics.inc_claims_sync("error")
			log.exception("claims_sync_failed", extra={"target_user": user_id})
			return
		obs_metrics.inc_claims_sync("ok")


class MembershipAuthorizer:
	"""Checks roles from token claims first and the user record second."""

	def __init__(self, repository: repo_module.GroupsRepository | None = None) -> None:
		self.repo = repository or repo_module.GroupsRepository()

	async def _stored_user(self, user_id: str) -> Optional[UserRecord]:
		obs_metrics.inc_claims_fallback()
		return await self.repo.get_user(user_id)

	async def stored_role(self, user_id: str, group_id: str) -> Optional[str]:
		user = await self._stored_user(user_id)
		if user is None:
			return None
		for membership in user.effective_memberships():
			if membership.group_id == group_id:
				return membership.role
		return None

	async def require_member(self, caller: AuthenticatedUser, group_id: str) -> str:
		role = caller.role_in(group_id)
		if role:
			return role
		role = await self.stored_role(caller.id, group_id)
		if role is None:
			raise PermissionDeniedError("membership_required")
		return role

	async def require_elevated(self, caller: AuthenticatedUser, group_id: str) -> str:
		role = caller.role_in(group_id)
		if policies.is_elevated(role):
			return role  # type: ignore[return-value]
		role = await self.stored_role(caller.id, group_id)
		if not policies.is_elevated(role):
			raise PermissionDeniedError("elevated_role_required")
		return role  # type: ignore[return-value]

	async def require_user_admin(self, caller: AuthenticatedUser) -> None:
		if any(policies.is_elevated(role) for role in caller.groups.values()):
			return
		user = await self._stored_user(caller.id)
		if user is not None and any(policies.is_elevated(m.role) for m in user.effective_memberships()):
			return
		raise PermissionDeniedError("user_admin_role_required")

	async def require_super_admin(self, caller: AuthenticatedUser) -> None:
		if caller.super_admin or is_super_admin_email(caller.email):
			return
		user = await self._stored_user(caller.id)
		if user is not None and is_super_admin_email(user.email):
			return
		raise PermissionDeniedError("super_admin_required")
