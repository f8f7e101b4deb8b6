"""Authentication helpers for FastAPI endpoints.

Access tokens are HS256 JWTs. Their ``groups`` / ``super_admin`` claims are a
snapshot written by identity sync and may be stale; authorization code must
treat them as a cache and fall back to the record store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ensemble.infra import jwt as jwt_helper
from ensemble.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	email: Optional[str] = None
	groups: Dict[str, str] = field(default_factory=dict)
	super_admin: bool = False

	def role_in(self, group_id: str) -> Optional[str]:
		return self.groups.get(group_id)


_bearer_scheme = HTTPBearer(auto_error=False)


def _parse_groups(raw: object) -> Dict[str, str]:
	if isinstance(raw, Mapping):
		return {str(key): str(value) for key, value in raw.items() if key and value}
	if isinstance(raw, str):
		groups: Dict[str, str] = {}
		for chunk in raw.split(","):
			if ":" not in chunk:
				continue
			group_id, role = chunk.split(":", 1)
			if group_id.strip() and role.strip():
				groups[group_id.strip()] = role.strip()
		return groups
	return {}


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	email = payload.get("email")
	return AuthenticatedUser(
		id=sub,
		email=str(email) if email else None,
		groups=_parse_groups(payload.get("groups")),
		super_admin=payload.get("super_admin") is True,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
	x_user_groups: Optional[str] = Header(default=None, alias="X-User-Groups"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(
			id=x_user_id,
			email=x_user_email,
			groups=_parse_groups(x_user_groups or ""),
		)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthenticated")
