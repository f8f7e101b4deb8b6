"""Typed data access over the document store for the groups domain."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from ensemble.groups.domain import models
from ensemble.groups.domain.exceptions import InternalError
from ensemble.infra.documents import DocumentStore, StoreError, Transaction, TransactionConflict
from ensemble.infra.store import get_store
from ensemble.settings import settings

log = logging.getLogger(__name__)

T = TypeVar("T")

USERS = "users"
GROUPS = "groups"
NOTIFICATIONS = "notifications"


def user_path(user_id: str) -> str:
	return f"{USERS}/{user_id}"


def group_path(group_id: str) -> str:
	return f"{GROUPS}/{group_id}"


def member_mirror_path(group_id: str, user_id: str) -> str:
	return f"{GROUPS}/{group_id}/members/{user_id}"


def services_collection(group_id: str) -> str:
	return f"{GROUPS}/{group_id}/services"


def service_path(group_id: str, service_id: str) -> str:
	return f"{services_collection(group_id)}/{service_id}"


def summary_path(group_id: str) -> str:
	return f"{GROUPS}/{group_id}/stats/summary"


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class GroupsRepository:
	"""Thin data-access layer around the document store."""

	def __init__(self, store: DocumentStore | None = None) -> None:
		self._store = store

	@property
	def store(self) -> DocumentStore:
		return self._store or get_store()

	async def run(self, func: Callable[[Transaction], Awaitable[T]]) -> T:
		"""Run ``func`` as a store transaction, mapping store failures to InternalError."""
		try:
			return await self.store.run_transaction(func)
		except TransactionConflict as exc:
			raise InternalError("transaction_contention") from exc
		except StoreError as exc:
			log.exception("store_transaction_failed")
			raise InternalError("store_failure") from exc

	# --- Transactional reads/writes --------------------------------------

	async def read_user(self, txn: Transaction, user_id: str) -> Optional[models.UserRecord]:
		snap = await txn.get(user_path(user_id))
		return models.UserRecord.from_document(snap.id, snap.data) if snap.data is not None else None

	async def read_group(self, txn: Transaction, group_id: str) -> Optional[models.Group]:
		snap = await txn.get(group_path(group_id))
		return models.Group.from_document(snap.id, snap.data) if snap.data is not None else None

	async def read_services(self, txn: Transaction, group_id: str) -> List[models.ServiceRecord]:
		snaps = await txn.list(services_collection(group_id))
		return [models.ServiceRecord.from_document(snap.id, snap.data) for snap in snaps if snap.data is not None]

	async def read_service(self, txn: Transaction, group_id: str, service_id: str) -> Optional[models.ServiceRecord]:
		snap = await txn.get(service_path(group_id, service_id))
		return models.ServiceRecord.from_document(snap.id, snap.data) if snap.data is not None else None

	def write_user(self, txn: Transaction, user: models.UserRecord) -> None:
		user.updated_at = utcnow()
		txn.set(user_path(user.id), user.to_document())

	def write_group(self, txn: Transaction, group: models.Group) -> None:
		txn.set(group_path(group.id), group.to_document())

	def write_service(self, txn: Transaction, group_id: str, record: models.ServiceRecord) -> None:
		txn.set(service_path(group_id, record.id), record.normalised().to_document())

	def write_member_mirror(self, txn: Transaction, group_id: str, user_id: str, role: str) -> None:
		mirror = models.MemberMirror(user_id=user_id, role=role, joined_at=utcnow())
		txn.set(member_mirror_path(group_id, user_id), mirror.model_dump(mode="json"))

	def delete_member_mirror(self, txn: Transaction, group_id: str, user_id: str) -> None:
		txn.delete(member_mirror_path(group_id, user_id))

	def delete_user(self, txn: Transaction, user_id: str) -> None:
		txn.delete(user_path(user_id))

	def write_summary(self, txn: Transaction, group_id: str, summary: models.StatsSummary) -> None:
		txn.set(summary_path(group_id), summary.model_dump(mode="json"))

	# --- Non-transactional reads -----------------------------------------

	async def get_user(self, user_id: str) -> Optional[models.UserRecord]:
		snap = await self.store.get(user_path(user_id))
		return models.UserRecord.from_document(snap.id, snap.data) if snap.data is not None else None

	async def get_group(self, group_id: str) -> Optional[models.Group]:
		snap = await self.store.get(group_path(group_id))
		return models.Group.from_document(snap.id, snap.data) if snap.data is not None else None

	async def get_summary(self, group_id: str) -> Optional[models.StatsSummary]:
		snap = await self.store.get(summary_path(group_id))
		return models.StatsSummary.model_validate(snap.data) if snap.data is not None else None

	async def list_services(self, group_id: str) -> List[models.ServiceRecord]:
		snaps = await self.store.list(services_collection(group_id))
		return [models.ServiceRecord.from_document(snap.id, snap.data) for snap in snaps if snap.data is not None]

	async def list_groups(self) -> List[models.Group]:
		snaps = await self.store.list(GROUPS)
		return [models.Group.from_document(snap.id, snap.data) for snap in snaps if snap.data is not None]

	async def list_user_ids(self) -> List[str]:
		return [snap.id for snap in await self.store.list(USERS)]

	async def find_group_by_field(self, field: str, value: str) -> Optional[models.Group]:
		snaps = await self.store.query(GROUPS, where=[(field, "==", value)], limit=1)
		if not snaps or snaps[0].data is None:
			return None
		return models.Group.from_document(snaps[0].id, snaps[0].data)

	async def recent_groups(self, limit: int) -> List[models.Group]:
		snaps = await self.store.query(GROUPS, order_by="created_at", descending=True, limit=limit)
		return [models.Group.from_document(snap.id, snap.data) for snap in snaps if snap.data is not None]

	async def users_with_token(self, token: str) -> List[models.UserRecord]:
		snaps = await self.store.query(USERS, where=[("notification_tokens", "array_contains", token)])
		return [models.UserRecord.from_document(snap.id, snap.data) for snap in snaps if snap.data is not None]

	# --- Batched writes ---------------------------------------------------

	async def update_many(
		self,
		updates: Sequence[Tuple[str, Dict[str, Any]]],
		*,
		chunk_size: int,
		fire_triggers: bool = True,
	) -> int:
		"""Apply field updates outside a transaction, committing every ``chunk_size`` writes."""
		written = 0
		batch = self.store.batch(fire_triggers=fire_triggers)
		try:
			for path, fields in updates:
				batch.update(path, fields)
				if len(batch) >= chunk_size:
					written += len(batch)
					await batch.commit()
			written += len(batch)
			await batch.commit()
		except StoreError as exc:
			log.exception("store_batch_failed", extra={"written": written})
			raise InternalError("store_failure") from exc
		return written

	async def delete_notifications_before(self, cutoff: datetime) -> int:
		"""Delete notification records created before ``cutoff``; returns the count."""
		stamp = cutoff.astimezone(timezone.utc).isoformat()
		snaps = await self.store.query(NOTIFICATIONS, where=[("created_at", "<", stamp)])
		return await self.delete_many([snap.path for snap in snaps], chunk_size=settings.backfill_batch_size)

	async def delete_many(self, paths: Sequence[str], *, chunk_size: int) -> int:
		deleted = 0
		batch = self.store.batch()
		for path in paths:
			batch.delete(path)
			if len(batch) >= chunk_size:
				deleted += len(batch)
				await batch.commit()
		deleted += len(batch)
		await batch.commit()
		return deleted
