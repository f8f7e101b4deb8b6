"""Membership transaction engine.

Every operation validates its input, checks authorization, runs one store
transaction over the user and group documents, and finally re-syncs the
affected user's claims outside that transaction.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import uuid4

from ensemble.groups.domain import policies, repo as repo_module, roster
from ensemble.groups.domain.claims import ClaimsSyncer, MembershipAuthorizer, require_caller
from ensemble.groups.domain.exceptions import InvalidArgumentError, NotFoundError
from ensemble.groups.domain.invites import InviteCodeResolver, generate_code
from ensemble.groups.domain.models import Group, Membership, RosterSlot, UserRecord
from ensemble.groups.schemas import dto
from ensemble.groups.stats.aggregator import StatsAggregator
from ensemble.infra.auth import AuthenticatedUser
from ensemble.infra.documents import Transaction
from ensemble.infra.identity import IdentityProvider, get_identity_provider
from ensemble.obs import metrics as obs_metrics
from ensemble.settings import settings

log = logging.getLogger(__name__)


@dataclass(slots=True)
class _JoinOutcome:
	group: Group
	role: str
	status: str
	unlinked: List[RosterSlot] = field(default_factory=list)


@dataclass(slots=True)
class _ClaimOutcome:
	status: str
	previous_slot_id: Optional[str] = None
	duplicates_marked: int = 0


@dataclass(slots=True)
class _UpdateOutcome:
	slot: RosterSlot
	resync_user_ids: List[str] = field(default_factory=list)


def _slot_summary(slot: RosterSlot) -> dto.RosterSlotSummary:
	return dto.RosterSlotSummary(id=slot.id, name=slot.name, voice=slot.voice)


def _set_active_group(user: UserRecord, group: Group, role: str) -> None:
	user.group_id = group.id
	user.group_name = group.name
	user.role = role


def _clear_active_group(user: UserRecord) -> None:
	user.group_id = None
	user.group_name = None
	user.role = None
	user.permissions = []


class MembershipService:
	"""Implements create/join/leave/claim/merge/update/delete for group rosters."""

	def __init__(
		self,
		repository: repo_module.GroupsRepository | None = None,
		resolver: InviteCodeResolver | None = None,
		syncer: ClaimsSyncer | None = None,
		authorizer: MembershipAuthorizer | None = None,
		identity: IdentityProvider | None = None,
		stats: StatsAggregator | None = None,
	) -> None:
		self.repo = repository or repo_module.GroupsRepository()
		self.resolver = resolver or InviteCodeResolver(self.repo)
		self.identity = identity or get_identity_provider()
		self.claims = syncer or ClaimsSyncer(self.repo, self.identity)
		self.authorizer = authorizer or MembershipAuthorizer(self.repo)
		self.stats = stats or StatsAggregator(self.repo)

	async def _load_user(self, txn: Transaction, caller: AuthenticatedUser) -> UserRecord:
		existing = await self.repo.read_user(txn, caller.id)
		if existing is not None:
			return existing
		return UserRecord(id=caller.id, email=caller.email, created_at=repo_module.utcnow())

	# ------------------------------------------------------------------
	# Group lifecycle

	async def create_group(self, user: AuthenticatedUser, payload: dto.GroupCreateRequest) -> dto.GroupCreateResponse:
		caller = require_caller(user)
		name = policies.require_text(payload.name, "name")
		group_type = policies.require_text(payload.group_type, "group_type")
		policies.ensure_group_type_valid(group_type)

		member_code = await self.resolver.generate_unique_code()
		regent_code = await self.resolver.generate_unique_code()
		while regent_code == member_code:
			regent_code = generate_code()
		group_id = uuid4().hex

		async def _txn(txn: Transaction) -> Group:
			user_record = await self._load_user(txn, caller)
			user_record.adopt_legacy_membership()
			head_slot = RosterSlot(
				id=caller.id,
				name=user_record.name,
				voice=user_record.voice,
				role="head",
				has_account=True,
				account_uid=caller.id,
				permissions=list(user_record.permissions),
			)
			group = Group(
				id=group_id,
				name=name,
				group_type=group_type,
				member_code=member_code,
				regent_code=regent_code,
				members=[head_slot],
				created_by=caller.id,
				created_at=repo_module.utcnow(),
			)
			user_record.memberships.append(
				Membership(group_id=group_id, group_name=name, role="head", group_type=group_type)
			)
			_set_active_group(user_record, group, "head")
			self.repo.write_group(txn, group)
			self.repo.write_user(txn, user_record)
			self.repo.write_member_mirror(txn, group_id, caller.id, "head")
			return group

		group = await self.repo.run(_txn)
		await self.claims.sync_best_effort(caller.id)
		obs_metrics.inc_membership_op("create_group")
		log.info("group_created", extra={"group_id": group.id, "group_type": group_type})
		return dto.GroupCreateResponse(
			group_id=group.id,
			name=group.name,
			group_type=group.group_type,
			member_code=group.member_code,
			regent_code=group.regent_code,
		)

	async def join_group(self, user: AuthenticatedUser, payload: dto.JoinGroupRequest) -> dto.JoinGroupResponse:
		caller = require_caller(user)
		code = policies.require_text(payload.code, "code")
		match = await self.resolver.resolve(code)
		if match is None:
			obs_metrics.inc_membership_op("join_group", "not_found")
			raise NotFoundError("invalid_invite_code")

		async def _txn(txn: Transaction) -> _JoinOutcome:
			group = await self.repo.read_group(txn, match.group_id)
			if group is None:
				raise NotFoundError("group_not_found")
			user_record = await self._load_user(txn, caller)
			user_record.adopt_legacy_membership()
			membership = user_record.membership_for(group.id)
			current_role = membership.role if membership else None
			new_role = policies.upgraded_role(current_role, match.role)
			new_permissions = policies.merge_permissions(user_record.permissions, match.permissions)
			changed = new_role != current_role or set(new_permissions) != set(user_record.permissions)
			unlinked = roster.unlinked_members(group.members)
			if membership is not None and not changed:
				return _JoinOutcome(group, new_role, "already_member", unlinked)

			if membership is None:
				user_record.memberships.append(
					Membership(group_id=group.id, group_name=group.name, role=new_role, group_type=group.group_type)
				)
			else:
				membership.role = new_role
				membership.group_name = group.name
				membership.group_type = group.group_type
			user_record.permissions = new_permissions
			if not user_record.group_id or user_record.group_id == group.id:
				_set_active_group(user_record, group, new_role)
			self.repo.write_user(txn, user_record)
			self.repo.write_member_mirror(txn, group.id, caller.id, new_role)

			# Only a slot already tied to this account is touched; new accounts
			# stay off the roster until they claim an entry.
			idx = roster.find_linked_index(group.members, caller.id)
			if idx is not None:
				slot = group.members[idx]
				slot.role = policies.upgraded_role(slot.role, new_role)
				slot.permissions = policies.merge_permissions(slot.permissions, match.permissions)
				slot.has_account = True
				self.repo.write_group(txn, group)
			return _JoinOutcome(group, new_role, "joined" if membership is None else "upgraded", unlinked)

		outcome = await self.repo.run(_txn)
		if outcome.status != "already_member":
			await self.claims.sync_best_effort(caller.id)
		obs_metrics.inc_membership_op("join_group", outcome.status)
		log.info("group_joined", extra={"group_id": outcome.group.id, "status": outcome.status, "role": outcome.role})
		return dto.JoinGroupResponse(
			group_id=outcome.group.id,
			group_name=outcome.group.name,
			role=outcome.role,
			status=outcome.status,
			unlinked_members=[_slot_summary(slot) for slot in outcome.unlinked],
		)

	async def leave_group(self, user: AuthenticatedUser, group_id: str) -> dto.LeaveGroupResponse:
		caller = require_caller(user)
		group_id = policies.require_text(group_id, "group_id")

		async def _txn(txn: Transaction) -> int:
			group = await self.repo.read_group(txn, group_id)
			user_record = await self.repo.read_user(txn, caller.id)
			has_membership = user_record is not None and any(
				m.group_id == group_id for m in user_record.effective_memberships()
			)
			if group is None and not has_membership:
				raise NotFoundError("group_not_found")

			removed = 0
			if group is not None:
				remaining: List[RosterSlot] = []
				touched = False
				for slot in group.members:
					if slot.id == caller.id or slot.account_uid == caller.id:
						removed += 1
						continue
					if caller.id in slot.linked_user_ids:
						roster.unlink_user(slot, caller.id)
						touched = True
					remaining.append(slot)
				if removed or touched:
					group.members = remaining
					self.repo.write_group(txn, group)
				self.repo.delete_member_mirror(txn, group_id, caller.id)

			if user_record is not None:
				user_record.memberships = [m for m in user_record.memberships if m.group_id != group_id]
				if user_record.group_id == group_id:
					_clear_active_group(user_record)
				self.repo.write_user(txn, user_record)
			return removed

		removed = await self.repo.run(_txn)
		await self.claims.sync_best_effort(caller.id)
		obs_metrics.inc_membership_op("leave_group")
		log.info("group_left", extra={"group_id": group_id, "removed_slots": removed})
		return dto.LeaveGroupResponse(group_id=group_id, removed_slots=removed)

	# ------------------------------------------------------------------
	# Roster linking

	async def claim_member(
		self,
		user: AuthenticatedUser,
		group_id: str,
		payload: dto.ClaimMemberRequest,
	) -> dto.ClaimMemberResponse:
		caller = require_caller(user)
		group_id = policies.require_text(group_id, "group_id")
		target_id = policies.require_text(payload.target_slot_id, "target_slot_id")
		if target_id == caller.id:
			raise InvalidArgumentError("cannot_claim_own_entry")
		await self.authorizer.require_member(caller, group_id)

		async def _txn(txn: Transaction) -> _ClaimOutcome:
			group = await self.repo.read_group(txn, group_id)
			if group is None:
				raise NotFoundError("group_not_found")
			target_idx = roster.index_of(group.members, target_id)
			if target_idx is None:
				raise NotFoundError("member_not_found")
			target = group.members[target_idx]
			if target.resolves_to(caller.id):
				return _ClaimOutcome("already_linked", target.id)

			previous_slot_id: Optional[str] = None
			for idx, slot in enumerate(group.members):
				if idx == target_idx or not slot.resolves_to(caller.id):
					continue
				roster.unlink_user(slot, caller.id)
				previous_slot_id = previous_slot_id or slot.id
			roster.link_user(target, caller.id)
			marked = roster.mark_shadow_duplicates(group.members, caller.id, keep_index=target_idx)
			self.repo.write_group(txn, group)
			return _ClaimOutcome("linked", previous_slot_id, marked)

		outcome = await self.repo.run(_txn)
		obs_metrics.inc_membership_op("claim_member", outcome.status)
		log.info(
			"member_claimed",
			extra={"group_id": group_id, "slot_id": target_id, "status": outcome.status},
		)
		return dto.ClaimMemberResponse(
			slot_id=target_id,
			status=outcome.status,
			previous_slot_id=outcome.previous_slot_id if outcome.status == "linked" else None,
			duplicates_marked=outcome.duplicates_marked,
		)

	async def merge_members(
		self,
		user: AuthenticatedUser,
		group_id: str,
		payload: dto.MergeMembersRequest,
	) -> dto.MergeMembersResponse:
		"""Fold one roster slot into another.

		Attendance sets are rewritten with chunked batch writes rather than one
		transaction; the rewrite is idempotent, so a partial failure is fixed
		by running the merge again. The rewrite skips the stats trigger; the
		summary is recomputed once after the roster change.
		"""
		caller = require_caller(user)
		group_id = policies.require_text(group_id, "group_id")
		from_id = policies.require_text(payload.from_slot_id, "from_slot_id")
		to_id = policies.require_text(payload.to_slot_id, "to_slot_id")
		if from_id == to_id:
			raise InvalidArgumentError("merge_into_self")
		await self.authorizer.require_elevated(caller, group_id)

		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		if roster.index_of(group.members, to_id) is None:
			raise NotFoundError("member_not_found")

		updates = []
		for record in await self.repo.list_services(group_id):
			confirmed, confirmed_changed = roster.replace_member_id(record.confirmed_members, from_id, to_id)
			absent, absent_changed = roster.replace_member_id(record.absent_members, from_id, to_id)
			if confirmed_changed or absent_changed:
				updates.append(
					(
						repo_module.service_path(group_id, record.id),
						{"confirmed_members": confirmed, "absent_members": absent},
					)
				)
		updated_services = await self.repo.update_many(
			updates, chunk_size=settings.backfill_batch_size, fire_triggers=False
		)

		async def _txn(txn: Transaction) -> bool:
			current = await self.repo.read_group(txn, group_id)
			if current is None:
				raise NotFoundError("group_not_found")
			from_idx = roster.index_of(current.members, from_id)
			to_idx = roster.index_of(current.members, to_id)
			if to_idx is None:
				raise NotFoundError("member_not_found")
			if from_idx is None:
				return False
			source = current.members[from_idx]
			destination = current.members[to_idx]
			if source.has_account:
				destination.has_account = True
				for linked in (source.id, source.account_uid, *source.linked_user_ids):
					if linked and linked != destination.account_uid and linked not in destination.linked_user_ids:
						destination.linked_user_ids.append(linked)
			del current.members[from_idx]
			self.repo.write_group(txn, current)
			return True

		removed = await self.repo.run(_txn)
		if updated_services or removed:
			await self.stats.recompute(group_id)
		obs_metrics.inc_membership_op("merge_members")
		log.info(
			"members_merged",
			extra={"group_id": group_id, "updated_services": updated_services, "removed_slot": removed},
		)
		return dto.MergeMembersResponse(updated_services=updated_services, removed_slot=removed)

	async def update_member(
		self,
		user: AuthenticatedUser,
		group_id: str,
		slot_id: str,
		payload: dto.MemberUpdateRequest,
	) -> dto.MemberResponse:
		caller = require_caller(user)
		group_id = policies.require_text(group_id, "group_id")
		slot_id = policies.require_text(slot_id, "slot_id")
		patch = payload.model_dump(exclude_unset=True, exclude_none=True)
		if not patch:
			raise InvalidArgumentError("empty_update")
		if "role" in patch:
			policies.ensure_role_valid(patch["role"])
		await self.authorizer.require_elevated(caller, group_id)

		async def _txn(txn: Transaction) -> _UpdateOutcome:
			group = await self.repo.read_group(txn, group_id)
			if group is None:
				raise NotFoundError("group_not_found")
			idx = roster.index_of(group.members, slot_id)
			if idx is None:
				raise NotFoundError("member_not_found")
			updated = group.members[idx].model_copy(update=patch, deep=True)
			targets: List[UserRecord] = []
			for candidate in roster.account_user_ids(updated):
				record = await self.repo.read_user(txn, candidate)
				if record is not None:
					targets.append(record)

			group.members[idx] = updated
			self.repo.write_group(txn, group)

			resync: List[str] = []
			for target in targets:
				changed = False
				membership = target.membership_for(group_id)
				if membership is not None and membership.role != updated.role:
					membership.role = updated.role
					changed = True
				if target.group_id == group_id:
					target.role = updated.role
					target.voice = updated.voice
					if "permissions" in patch:
						target.permissions = list(updated.permissions)
					changed = changed or "role" in patch
				self.repo.write_user(txn, target)
				if changed:
					resync.append(target.id)
			return _UpdateOutcome(updated, resync)

		outcome = await self.repo.run(_txn)
		for user_id in outcome.resync_user_ids:
			await self.claims.sync_best_effort(user_id)
		obs_metrics.inc_membership_op("update_member")
		log.info("member_updated", extra={"group_id": group_id, "slot_id": slot_id, "fields": sorted(patch)})
		return dto.MemberResponse(**outcome.slot.model_dump())

	# ------------------------------------------------------------------
	# Account deletion

	async def delete_self(self, user: AuthenticatedUser) -> dto.DeleteAccountResponse:
		caller = require_caller(user)
		return await self._delete_account(caller.id, operation="delete_self")

	async def delete_user(self, user: AuthenticatedUser, target_user_id: str) -> dto.DeleteAccountResponse:
		caller = require_caller(user)
		target_id = policies.require_text(target_user_id, "target_user_id")
		policies.ensure_not_self(caller.id, target_id)
		await self.authorizer.require_user_admin(caller)
		return await self._delete_account(target_id, operation="delete_user")

	async def _delete_account(self, user_id: str, *, operation: str) -> dto.DeleteAccountResponse:
		"""Remove the user but keep their roster slots for attendance history."""

		async def _txn(txn: Transaction) -> bool:
			user_record = await self.repo.read_user(txn, user_id)
			if user_record is None:
				return False
			group_ids = list(dict.fromkeys(m.group_id for m in user_record.effective_memberships() if m.group_id))
			groups = [await self.repo.read_group(txn, group_id) for group_id in group_ids]
			for group_id, group in zip(group_ids, groups):
				if group is not None:
					changed = False
					for slot in group.members:
						if slot.id != user_id and not slot.resolves_to(user_id):
							continue
						if slot.id == user_id or slot.account_uid == user_id:
							slot.notification_tokens = []
						roster.unlink_user(slot, user_id)
						changed = True
					if changed:
						self.repo.write_group(txn, group)
				self.repo.delete_member_mirror(txn, group_id, user_id)
			self.repo.delete_user(txn, user_id)
			return True

		existed = await self.repo.run(_txn)
		try:
			await self.identity.delete_principal(user_id)
		except Exception:
			log.exception("identity_principal_delete_failed", extra={"target_user": user_id})
		obs_metrics.inc_membership_op(operation)
		log.info(operation, extra={"target_user": user_id, "existed": existed})
		return dto.DeleteAccountResponse(deleted_user_id=user_id, existed=existed)

	# ------------------------------------------------------------------
	# Notification tokens and claims maintenance

	async def register_notification_token(
		self,
		user: AuthenticatedUser,
		payload: dto.NotificationTokenRequest,
	) -> dto.NotificationTokenResponse:
		"""Attach a device token to the caller and strip it from any other user."""
		caller = require_caller(user)
		token = policies.ensure_notification_token(payload.token)
		holders = [holder.id for holder in await self.repo.users_with_token(token) if holder.id != caller.id]

		async def _txn(txn: Transaction) -> int:
			others = [await self.repo.read_user(txn, holder_id) for holder_id in holders]
			user_record = await self._load_user(txn, caller)
			removed = 0
			for other in others:
				if other is None or token not in other.notification_tokens:
					continue
				other.notification_tokens = [t for t in other.notification_tokens if t != token]
				self.repo.write_user(txn, other)
				removed += 1
			if token not in user_record.notification_tokens:
				user_record.notification_tokens.append(token)
			user_record.notifications_enabled = True
			self.repo.write_user(txn, user_record)
			return removed

		removed = await self.repo.run(_txn)
		obs_metrics.inc_tokens_reassigned(removed)
		if removed:
			log.warning("notification_token_reassigned", extra={"previous_holders": removed})
		return dto.NotificationTokenResponse(removed_from_others=removed)

	async def migrate_all_claims(self, user: AuthenticatedUser) -> dto.ClaimsMigrationResponse:
		caller = require_caller(user)
		await self.authorizer.require_super_admin(caller)
		user_ids = await self.repo.list_user_ids()
		chunk_size = max(1, settings.claims_migration_chunk_size)
		migrated = 0
		errors = 0
		for start in range(0, len(user_ids), chunk_size):
			chunk = user_ids[start : start + chunk_size]
			results = await asyncio.gather(
				*(self.claims.sync_user_claims(user_id) for user_id in chunk),
				return_exceptions=True,
			)
			for user_id, result in zip(chunk, results):
				if isinstance(result, Exception):
					errors += 1
					log.error("claims_migration_failed", extra={"target_user": user_id}, exc_info=result)
				else:
					migrated += 1
		log.info("claims_migrated", extra={"migrated": migrated, "errors": errors})
		return dto.ClaimsMigrationResponse(migrated=migrated, errors=errors, total=len(user_ids))
