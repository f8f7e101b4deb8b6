"""HS256 access tokens carrying a snapshot of a user's group claims."""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional

import jwt

from ensemble.settings import settings

ISSUER = "ensemble-api"
AUDIENCE = "ensemble-app"


def encode_access(
	user_id: str,
	*,
	groups: Optional[Mapping[str, str]] = None,
	super_admin: bool = False,
	email: Optional[str] = None,
	ttl_seconds: int = 3600,
) -> str:
	now = int(time.time())
	body: Dict[str, Any] = {
		"sub": user_id,
		"iss": ISSUER,
		"aud": AUDIENCE,
		"iat": now,
		"exp": now + ttl_seconds,
		"groups": dict(groups or {}),
	}
	if super_admin:
		body["super_admin"] = True
	if email:
		body["email"] = email
	return jwt.encode(body, settings.secret_key, algorithm="HS256")


def decode_access(token: str) -> Dict[str, Any]:
	"""Validate signature, expiry, issuer and audience; raises ``jwt.InvalidTokenError``."""
	return jwt.decode(
		token,
		settings.secret_key,
		algorithms=["HS256"],
		audience=AUDIENCE,
		issuer=ISSUER,
		leeway=5,
		options={"require": ["sub", "exp", "iat", "iss", "aud"]},
	)
