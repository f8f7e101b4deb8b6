"""Event record ("service") writes and the summary read.

None of these touch the summary document directly; the stats aggregator
reacts to the record writes.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional
from uuid import uuid4

from ensemble.groups.domain import policies, repo as repo_module, roster
from ensemble.groups.domain.claims import MembershipAuthorizer, require_caller
from ensemble.groups.domain.exceptions import InvalidArgumentError, NotFoundError, PermissionDeniedError
from ensemble.groups.domain.models import ServiceRecord, StatsSummary
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser
from ensemble.infra.documents import Transaction

log = logging.getLogger(__name__)


class EventRecordService:
	def __init__(
		self,
		repository: repo_module.GroupsRepository | None = None,
		authorizer: MembershipAuthorizer | None = None,
	) -> None:
		self.repo = repository or repo_module.GroupsRepository()
		self.authorizer = authorizer or MembershipAuthorizer(self.repo)

	async def _mutate(
		self,
		group_id: str,
		service_id: str,
		mutate: Callable[[ServiceRecord], None],
		*,
		allow_deleted: bool = False,
	) -> ServiceRecord:
		async def _txn(txn: Transaction) -> ServiceRecord:
			record = await self.repo.read_service(txn, group_id, service_id)
			if record is None:
				raise NotFoundError("service_not_found")
			if record.deleted_at is not None and not allow_deleted:
				raise NotFoundError("service_deleted")
			mutate(record)
			self.repo.write_service(txn, group_id, record)
			return record.normalised()

		return await self.repo.run(_txn)

	async def create_record(
		self,
		user: AuthenticatedUser,
		group_id: str,
		payload: dto.ServiceCreateRequest,
	) -> ServiceRecord:
		caller = require_caller(user)
		group_id = policies.require_text(group_id, "group_id")
		date = policies.require_text(payload.date, "date")
		await self.authorizer.require_elevated(caller, group_id)
		record = ServiceRecord(
			id=uuid4().hex,
			date=date,
			title=payload.title,
			songs=list(payload.songs),
			created_by=caller.id,
		)

		async def _txn(txn: Transaction) -> ServiceRecord:
			if await self.repo.read_group(txn, group_id) is None:
				raise NotFoundError("group_not_found")
			self.repo.write_service(txn, group_id, record)
			return record

		created = await self.repo.run(_txn)
		log.info("service_created", extra={"group_id": group_id, "service_id": created.id})
		return created

	async def list_records(self, user: AuthenticatedUser, group_id: str, *, include_deleted: bool = False) -> List[ServiceRecord]:
		caller = require_caller(user)
		await self.authorizer.require_member(caller, group_id)
		records = await self.repo.list_services(group_id)
		if not include_deleted:
			records = [record for record in records if record.deleted_at is None]
		return sorted(records, key=lambda record: (record.date, record.id), reverse=True)

	async def vote_attendance(
		self,
		user: AuthenticatedUser,
		group_id: str,
		service_id: str,
		payload: dto.AttendanceVoteRequest,
	) -> ServiceRecord:
		"""Mark one roster slot present or absent.

		Members may vote for the slot linked to their own account while the
		record is open; anything else needs an elevated role.
		"""
		caller = require_caller(user)
		slot_id = policies.require_text(payload.slot_id, "slot_id")
		role = await self.authorizer.require_member(caller, group_id)
		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		idx = roster.index_of(group.members, slot_id)
		if idx is None:
			raise NotFoundError("member_not_found")
		own_slot = group.members[idx].resolves_to(caller.id) or slot_id == caller.id
		elevated = policies.is_elevated(role) or await self._stored_elevated(caller, group_id)
		if not own_slot and not elevated:
			raise PermissionDeniedError("elevated_role_required")

		def _apply(record: ServiceRecord) -> None:
			if record.is_finalized and not elevated:
				raise PermissionDeniedError("service_finalized")
			confirmed = [value for value in record.confirmed_members if value != slot_id]
			absent = [value for value in record.absent_members if value != slot_id]
			if payload.present:
				confirmed.append(slot_id)
			else:
				absent.append(slot_id)
			record.confirmed_members = confirmed
			record.absent_members = absent

		return await self._mutate(group_id, service_id, _apply)

	async def _stored_elevated(self, caller: AuthenticatedUser, group_id: str) -> bool:
		try:
			await self.authorizer.require_elevated(caller, group_id)
		except PermissionDeniedError:
			return False
		return True

	async def finalize(self, user: AuthenticatedUser, group_id: str, service_id: str, *, finalized: bool = True) -> ServiceRecord:
		caller = require_caller(user)
		await self.authorizer.require_elevated(caller, group_id)

		def _apply(record: ServiceRecord) -> None:
			record.is_finalized = finalized

		record = await self._mutate(group_id, service_id, _apply)
		log.info("service_finalized", extra={"group_id": group_id, "service_id": service_id, "finalized": finalized})
		return record

	async def update_songs(
		self,
		user: AuthenticatedUser,
		group_id: str,
		service_id: str,
		payload: dto.SongsUpdateRequest,
	) -> ServiceRecord:
		caller = require_caller(user)
		if any(not song.song_id for song in payload.songs):
			raise InvalidArgumentError("missing_song_id")
		await self.authorizer.require_elevated(caller, group_id)

		def _apply(record: ServiceRecord) -> None:
			record.songs = list(payload.songs)

		return await self._mutate(group_id, service_id, _apply)

	async def soft_delete(self, user: AuthenticatedUser, group_id: str, service_id: str) -> ServiceRecord:
		caller = require_caller(user)
		await self.authorizer.require_elevated(caller, group_id)

		def _apply(record: ServiceRecord) -> None:
			record.deleted_at = repo_module.utcnow()

		record = await self._mutate(group_id, service_id, _apply)
		log.info("service_deleted", extra={"group_id": group_id, "service_id": service_id})
		return record

	async def restore(self, user: AuthenticatedUser, group_id: str, service_id: str) -> ServiceRecord:
		caller = require_caller(user)
		await self.authorizer.require_elevated(caller, group_id)

		def _apply(record: ServiceRecord) -> None:
			record.deleted_at = None

		return await self._mutate(group_id, service_id, _apply, allow_deleted=True)

	async def get_summary(self, user: AuthenticatedUser, group_id: str) -> Optional[StatsSummary]:
		caller = require_caller(user)
		await self.authorizer.require_member(caller, group_id)
		return await self.repo.get_summary(group_id)
