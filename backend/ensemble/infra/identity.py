"""Identity principal store holding custom authorization claims.

Claims live in Redis under ``identity:claims:{uid}``. Token issuance copies
them into access tokens, so readers of a token always see a snapshot that can
trail the record store.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from ensemble.infra.redis import get_redis

_CLAIMS_KEY = "identity:claims:{uid}"


class IdentityProvider:
	"""Thin wrapper around the Redis keys that make up a principal."""

	async def set_custom_claims(self, uid: str, claims: Dict[str, Any]) -> None:
		await get_redis().set(_CLAIMS_KEY.format(uid=uid), json.dumps(claims, sort_keys=True))

	async def get_custom_claims(self, uid: str) -> Dict[str, Any]:
		raw = await get_redis().get(_CLAIMS_KEY.format(uid=uid))
		if not raw:
			return {}
		return json.loads(raw)

	async def delete_principal(self, uid: str) -> None:
		await get_redis().delete(_CLAIMS_KEY.format(uid=uid))


_provider = IdentityProvider()


def get_identity_provider() -> IdentityProvider:
	return _provider
