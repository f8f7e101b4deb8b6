"""Helpers over the roster embedded in a group document.

Slot positions are only meaningful for the copy of the roster read inside
the current transaction; indexes are recomputed on every attempt and never
stored.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from ensemble.groups.domain.models import RosterSlot
from ensemble.groups.domain.policies import LEADERSHIP_ROLES


def index_of(members: Sequence[RosterSlot], slot_id: str) -> Optional[int]:
	for idx, slot in enumerate(members):
		if slot.id == slot_id:
			return idx
	return None


def find_linked_index(members: Sequence[RosterSlot], user_id: str) -> Optional[int]:
	"""Locate the slot the user is linked to, preferring the primary account link."""
	for idx, slot in enumerate(members):
		if slot.account_uid == user_id:
			return idx
	for idx, slot in enumerate(members):
		if user_id in slot.linked_user_ids:
			return idx
	return None


def unlinked_members(members: Sequence[RosterSlot]) -> List[RosterSlot]:
	"""Named slots with no account attached; candidates for a claim."""
	return [
		slot
		for slot in members
		if not slot.has_account and not slot.is_duplicate and slot.name.strip()
	]


def account_user_ids(slot: RosterSlot) -> List[str]:
	"""Ids that may name a user document for this slot.

	Merged slots keep folded accounts (and the ids of folded slots) in
	``linked_user_ids``; callers skip ids with no user document.
	"""
	candidates: List[str] = []
	if slot.account_uid:
		candidates.append(slot.account_uid)
	elif slot.has_account:
		candidates.append(slot.id)
	candidates.extend(slot.linked_user_ids)
	return list(dict.fromkeys(candidates))


def unlink_user(slot: RosterSlot, user_id: str) -> None:
	slot.linked_user_ids = [uid for uid in slot.linked_user_ids if uid != user_id]
	if slot.account_uid == user_id:
		slot.account_uid = None
	slot.refresh_has_account()


def link_user(slot: RosterSlot, user_id: str) -> None:
	if slot.account_uid is None:
		slot.account_uid = user_id
	elif slot.account_uid != user_id and user_id not in slot.linked_user_ids:
		slot.linked_user_ids.append(user_id)
	slot.has_account = True


def mark_shadow_duplicates(members: Sequence[RosterSlot], user_id: str, *, keep_index: int) -> int:
	"""Flag account-less slots whose id is the user's own id as duplicates."""
	marked = 0
	for idx, slot in enumerate(members):
		if idx == keep_index or slot.id != user_id or slot.account_uid is not None:
			continue
		if not slot.is_duplicate:
			slot.is_duplicate = True
			marked += 1
	return marked


def real_roster_size(members: Sequence[RosterSlot]) -> int:
	"""Roster size ignoring duplicates and account-only slots with no part or role."""
	total = 0
	for slot in members:
		if slot.is_duplicate:
			continue
		if not slot.has_account or (slot.voice or "").strip() or slot.role in LEADERSHIP_ROLES:
			total += 1
	return total


def replace_member_id(values: Sequence[str], old: str, new: str) -> tuple[List[str], bool]:
	"""Swap ``old`` for ``new`` in an attendance set, keeping it duplicate free."""
	if old not in values:
		return list(values), False
	replaced = [value for value in values if value != old]
	if new not in replaced:
		replaced.append(new)
	return replaced, True
