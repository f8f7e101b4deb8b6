"""Document store contract shared by the membership and statistics engines.

Documents are JSON objects addressed by slash-separated paths
(``groups/{gid}/services/{sid}``). Every document carries a version that is
bumped on each write; transactions record the versions they read and the
commit is rejected with :class:`TransactionConflict` when any of them moved.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from ensemble.obs import metrics as obs_metrics
from ensemble.settings import settings

log = logging.getLogger(__name__)

Document = Dict[str, Any]
WhereClause = Tuple[str, str, Any]
TriggerHandler = Callable[["DocumentChange"], Awaitable[None]]
T = TypeVar("T")


class StoreError(Exception):
	"""Base class for record store failures."""


class TransactionConflict(StoreError):
	"""Raised when a transaction observed data that changed before commit."""


class DocumentMissing(StoreError):
	"""Raised when ``update`` targets a document that does not exist."""


def collection_of(path: str) -> str:
	segments = path.strip("/").split("/")
	if len(segments) < 2 or len(segments) % 2:
		raise StoreError(f"invalid_document_path:{path}")
	return "/".join(segments[:-1])


@dataclass(slots=True)
class DocumentSnapshot:
	path: str
	data: Optional[Document]
	version: int = 0

	@property
	def id(self) -> str:
		return self.path.rsplit("/", 1)[-1]

	@property
	def exists(self) -> bool:
		return self.data is not None


@dataclass(slots=True)
class DocumentChange:
	path: str
	before: Optional[Document]
	after: Optional[Document]
	params: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class WriteOp:
	kind: str
	path: str
	data: Optional[Document] = None
	merge: bool = False


def apply_write(current: Optional[Document], op: WriteOp) -> Optional[Document]:
	"""Return the document state produced by ``op`` on top of ``current``."""
	if op.kind == "delete":
		return None
	payload = copy.deepcopy(op.data or {})
	if op.kind == "update":
		if current is None:
			raise DocumentMissing(op.path)
		merged = dict(current)
		merged.update(payload)
		return merged
	if op.merge and current is not None:
		merged = dict(current)
		merged.update(payload)
		return merged
	return payload


def stage_writes(
	current: Dict[str, Optional[Document]],
	ops: Sequence[WriteOp],
) -> Tuple[Dict[str, Optional[Document]], List[DocumentChange]]:
	"""Fold ``ops`` over ``current`` and describe each touched document once."""
	staged: Dict[str, Optional[Document]] = {}
	befores: Dict[str, Optional[Document]] = {}
	for op in ops:
		if op.path not in staged:
			befores[op.path] = current.get(op.path)
			staged[op.path] = current.get(op.path)
		staged[op.path] = apply_write(staged[op.path], op)
	changes = [
		DocumentChange(path=path, before=copy.deepcopy(befores[path]), after=copy.deepcopy(after))
		for path, after in staged.items()
	]
	return staged, changes


def matches_where(data: Document, clauses: Sequence[WhereClause]) -> bool:
	for field_name, op, value in clauses:
		current = data.get(field_name)
		if op == "==":
			if current != value:
				return False
		elif op == "<":
			if current is None or not current < value:
				return False
		elif op == "array_contains":
			if not isinstance(current, list) or value not in current:
				return False
		else:
			raise StoreError(f"unsupported_operator:{op}")
	return True


class _WriteBuffer:
	def __init__(self) -> None:
		self._ops: List[WriteOp] = []

	def set(self, path: str, data: Document, *, merge: bool = False) -> None:
		collection_of(path)
		self._ops.append(WriteOp("set", path, data, merge))

	def update(self, path: str, data: Document) -> None:
		collection_of(path)
		self._ops.append(WriteOp("update", path, data))

	def delete(self, path: str) -> None:
		collection_of(path)
		self._ops.append(WriteOp("delete", path))

	def __len__(self) -> int:
		return len(self._ops)


class WriteBatch(_WriteBuffer):
	"""Non-transactional group of writes applied together."""

	def __init__(self, store: "DocumentStore", *, fire_triggers: bool = True) -> None:
		super().__init__()
		self._store = store
		self._fire_triggers = fire_triggers

	async def commit(self) -> None:
		if not self._ops:
			return
		ops, self._ops = self._ops, []
		changes = await self._store._apply({}, {}, ops)
		if self._fire_triggers:
			await self._store._dispatch(changes)


class Transaction(_WriteBuffer):
	"""Reads are tracked by version; writes are buffered until commit."""

	def __init__(self, store: "DocumentStore") -> None:
		super().__init__()
		self._store = store
		self._reads: Dict[str, int] = {}
		self._collections: Dict[str, frozenset[str]] = {}

	async def get(self, path: str) -> DocumentSnapshot:
		snapshot = await self._store._read(path)
		self._reads.setdefault(path, snapshot.version)
		return snapshot

	async def list(self, collection: str) -> List[DocumentSnapshot]:
		snapshots = await self._store._read_collection(collection)
		self._collections.setdefault(collection, frozenset(snap.path for snap in snapshots))
		for snap in snapshots:
			self._reads.setdefault(snap.path, snap.version)
		return snapshots


class DocumentStore(abc.ABC):
	"""Transactional document store with per-document write triggers."""

	def __init__(self) -> None:
		self._triggers: List[Tuple[re.Pattern[str], TriggerHandler]] = []

	# ------------------------------------------------------------------
	# Backend hooks

	@abc.abstractmethod
	async def _read(self, path: str) -> DocumentSnapshot:
		...

	@abc.abstractmethod
	async def _read_collection(self, collection: str) -> List[DocumentSnapshot]:
		...

	@abc.abstractmethod
	async def _apply(
		self,
		reads: Dict[str, int],
		collections: Dict[str, frozenset[str]],
		ops: Sequence[WriteOp],
	) -> List[DocumentChange]:
		"""Validate read versions and apply ``ops`` atomically."""

	@abc.abstractmethod
	async def query(
		self,
		collection: str,
		*,
		where: Sequence[WhereClause] = (),
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> List[DocumentSnapshot]:
		...

	# ------------------------------------------------------------------
	# Public API

	async def get(self, path: str) -> DocumentSnapshot:
		return await self._read(path)

	async def list(self, collection: str) -> List[DocumentSnapshot]:
		return await self._read_collection(collection)

	async def set(self, path: str, data: Document, *, merge: bool = False) -> None:
		batch = self.batch()
		batch.set(path, data, merge=merge)
		await batch.commit()

	async def delete(self, path: str) -> None:
		batch = self.batch()
		batch.delete(path)
		await batch.commit()

	def batch(self, *, fire_triggers: bool = True) -> WriteBatch:
		"""Start a batch; ``fire_triggers=False`` skips write triggers on commit."""
		return WriteBatch(self, fire_triggers=fire_triggers)

	async def run_transaction(
		self,
		func: Callable[[Transaction], Awaitable[T]],
		*,
		max_attempts: Optional[int] = None,
	) -> T:
		"""Run ``func`` and commit its writes, re-running it on conflicts.

		Exceptions raised by ``func`` abort the attempt and propagate unchanged.
		"""
		attempts = max(1, max_attempts or settings.transaction_max_attempts)
		attempt = 0
		while True:
			attempt += 1
			txn = Transaction(self)
			result = await func(txn)
			try:
				changes = await self._apply(txn._reads, txn._collections, txn._ops)
			except TransactionConflict:
				if attempt >= attempts:
					obs_metrics.inc_transaction_conflict("exhausted")
					log.warning("transaction_retries_exhausted", extra={"attempts": attempt})
					raise
				obs_metrics.inc_transaction_conflict("retried")
				await asyncio.sleep(random.uniform(0, 0.005) * attempt)
				continue
			await self._dispatch(changes)
			return result

	def on_write(self, pattern: str, handler: TriggerHandler) -> None:
		"""Register ``handler`` for writes to documents matching ``pattern``."""
		regex = "^" + re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", pattern.strip("/")) + "$"
		self._triggers.append((re.compile(regex), handler))

	async def _dispatch(self, changes: Sequence[DocumentChange]) -> None:
		for change in changes:
			for regex, handler in self._triggers:
				match = regex.match(change.path)
				if match is None:
					continue
				event = DocumentChange(
					path=change.path,
					before=change.before,
					after=change.after,
					params=match.groupdict(),
				)
				try:
					await handler(event)
				except Exception:
					log.exception("document_trigger_failed", extra={"path": change.path})
