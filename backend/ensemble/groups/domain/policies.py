"""Authorization and validation policies for membership operations."""

from __future__ import annotations

from typing import Iterable, Optional

from ensemble.groups.domain.exceptions import InvalidArgumentError
from ensemble.settings import settings

ROLE_HIERARCHY = {"head": 3, "regent": 2, "admin": 2, "member": 1}
ASSIGNABLE_ROLES = ("member", "regent", "head")
# "admin" survives on older records; it is honoured but never assigned.
ELEVATED_ROLES = frozenset({"head", "regent", "admin"})
LEADERSHIP_ROLES = frozenset({"head", "regent", "admin"})


def role_rank(role: Optional[str]) -> int:
	return ROLE_HIERARCHY.get(role or "", 0)


def upgraded_role(current: Optional[str], offered: str) -> str:
	"""Roles only escalate: the higher of the current and offered role wins."""
	if current is None:
		return offered
	return offered if role_rank(offered) > role_rank(current) else current


def merge_permissions(current: Iterable[str], extra: Iterable[str]) -> list[str]:
	merged = list(dict.fromkeys(p for p in current if p))
	for permission in extra:
		if permission and permission not in merged:
			merged.append(permission)
	return merged


def is_elevated(role: Optional[str]) -> bool:
	return role in ELEVATED_ROLES


def require_text(value: Optional[str], name: str) -> str:
	if not isinstance(value, str) or not value.strip():
		raise InvalidArgumentError(f"missing_{name}")
	return value.strip()


def ensure_group_type_valid(group_type: str) -> None:
	if group_type not in settings.group_types:
		raise InvalidArgumentError("invalid_group_type")


def ensure_role_valid(role: str) -> None:
	if role not in ASSIGNABLE_ROLES:
		raise InvalidArgumentError("invalid_role")


def ensure_notification_token(token: Optional[str]) -> str:
	if not isinstance(token, str) or not token or len(token) > settings.notification_token_max_length:
		raise InvalidArgumentError("invalid_notification_token")
	return token


def ensure_not_self(caller_id: str, target_id: str) -> None:
	if caller_id == target_id:
		raise InvalidArgumentError("cannot_target_self")
