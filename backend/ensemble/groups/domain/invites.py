"""Invite code generation and resolution."""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import List, Optional

from ensemble.groups.domain import repo as repo_module
from ensemble.settings import settings

log = logging.getLogger(__name__)

_ALPHABET = string.ascii_uppercase + string.digits


def generate_code(length: Optional[int] = None) -> str:
	return "".join(secrets.choice(_ALPHABET) for _ in range(length or settings.invite_code_length))


def normalise_code(code: str) -> str:
	return code.strip().upper()


@dataclass(slots=True)
class InviteMatch:
	group_id: str
	group_name: str
	group_type: Optional[str]
	role: str
	permissions: List[str] = field(default_factory=list)


class InviteCodeResolver:
	"""Maps an invite code to a group and the role it grants.

	Member and regent codes are looked up by field; admin codes live inside a
	list on the group document, so they are found by scanning the most
	recently created groups.
	"""

	def __init__(self, repository: repo_module.GroupsRepository | None = None) -> None:
		self.repo = repository or repo_module.GroupsRepository()

	async def resolve(self, code: str) -> Optional[InviteMatch]:
		wanted = normalise_code(code)
		for field_name, role in (("member_code", "member"), ("regent_code", "regent")):
			group = await self.repo.find_group_by_field(field_name, wanted)
			if group is not None:
				return InviteMatch(group.id, group.name, group.group_type, role)
		for group in await self.repo.recent_groups(settings.invite_scan_limit):
			for admin_code in group.admin_codes:
				if normalise_code(admin_code.code) == wanted:
					return InviteMatch(
						group.id,
						group.name,
						group.group_type,
						"member",
						list(admin_code.permissions),
					)
		return None

	async def is_taken(self, code: str) -> bool:
		for field_name in ("member_code", "regent_code"):
			if await self.repo.find_group_by_field(field_name, code) is not None:
				return True
		return False

	async def generate_unique_code(self) -> str:
		"""Generate a member/regent code not used by any other group."""
		code = generate_code()
		for _ in range(max(1, settings.invite_code_unique_attempts)):
			if not await self.is_taken(code):
				return code
			code = generate_code()
		log.warning("invite_code_collision_unresolved", extra={"attempts": settings.invite_code_unique_attempts})
		return code
